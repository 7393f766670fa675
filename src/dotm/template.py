"""Template rendering for ``.tera`` files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateError as JinjaTemplateError


class TemplateError(RuntimeError):
    """Raised when a template cannot be parsed or rendered."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path is not None else message)


def _environment() -> Environment:
    return Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render_template(template_text: str, variables: Mapping[str, Any], *, path: Path | None = None) -> str:
    """Render ``template_text`` with ``variables``.

    Undefined variables are errors rather than empty strings.
    """

    try:
        template = _environment().from_string(template_text)
        return template.render(dict(variables))
    except JinjaTemplateError as exc:
        raise TemplateError(f"failed to render template: {exc}", path) from exc


def render_file(path: Path, variables: Mapping[str, Any]) -> str:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"failed to read template: {exc}", path) from exc
    return render_template(text, variables, path=path)
