from __future__ import annotations

from rich.console import Console

from dotm.config import ConfigLoader
from dotm.listing import build_tree, render_hosts, render_packages, render_roles


def _setup(dotfiles) -> ConfigLoader:
    dotfiles.package("util")
    dotfiles.package("shell", description="zsh setup", depends=["util"], suggests=["fonts"])
    dotfiles.package("etc", system=True, target="/etc", strategy="copy")
    dotfiles.role("base", ["shell"])
    dotfiles.role("server", ["etc"])
    dotfiles.host("box", ["base", "server"])
    dotfiles.host("laptop", ["base"])
    return ConfigLoader(dotfiles.root)


def test_render_packages(dotfiles) -> None:
    loader = _setup(dotfiles)

    assert render_packages(loader.root) == "etc\nshell - zsh setup\nutil\n"

    verbose = render_packages(loader.root, verbose=True)
    assert "shell - zsh setup\n  depends: util\n  suggests: fonts\n" in verbose
    assert "etc\n  target: /etc\n  strategy: copy\n  system: true\n" in verbose


def test_render_roles_and_hosts(dotfiles) -> None:
    loader = _setup(dotfiles)

    assert render_roles(loader) == "base\nserver\n"
    assert render_roles(loader, verbose=True) == "base [shell]\nserver [etc]\n"
    assert render_hosts(loader) == "box\nlaptop\n"
    assert render_hosts(loader, verbose=True) == "box [base, server]\nlaptop [base]\n"


def test_tree(dotfiles) -> None:
    loader = _setup(dotfiles)
    console = Console(record=True, width=80)

    console.print(build_tree(loader))
    text = console.export_text()

    lines = [line.strip("│├└─ ") for line in text.splitlines()]
    assert lines == ["box", "base", "shell", "server", "etc", "laptop", "base", "shell"]
