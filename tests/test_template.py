from __future__ import annotations

from pathlib import Path

import pytest

from dotm.template import TemplateError, render_file, render_template


def test_render_nested_variables() -> None:
    text = "[user]\n  email = {{ git.email }}\n"
    assert render_template(text, {"git": {"email": "me@example.com"}}) == "[user]\n  email = me@example.com\n"


def test_conditionals_and_trailing_newline() -> None:
    text = "{% if dark %}theme=dark{% else %}theme=light{% endif %}\n"
    assert render_template(text, {"dark": True}) == "theme=dark\n"


def test_html_is_not_escaped() -> None:
    assert render_template("{{ value }}", {"value": "<a & b>"}) == "<a & b>"


def test_undefined_variable_is_an_error() -> None:
    with pytest.raises(TemplateError, match="undefined"):
        render_template("hello {{ missing }}", {})


def test_syntax_error_carries_path(tmp_path: Path) -> None:
    path = tmp_path / "broken.conf.tera"
    path.write_text("{% if %}\n")

    with pytest.raises(TemplateError) as excinfo:
        render_file(path, {})

    assert excinfo.value.path == path
    assert str(path) in str(excinfo.value)
