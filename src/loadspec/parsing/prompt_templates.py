"""Jinja2 rendering for the prompt texts the composer sends to a backend."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from jinja2 import (
    BaseLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

from loadspec.parsing.exceptions import TemplateError

TEMPLATE_SUFFIX = ".jinja2"

# One file per prompt under ``loadspec/parsing/templates``.
PROMPT_NAMES = ("system_prompt", "parse_request", "correction")


def _environment(loader: BaseLoader) -> Environment:
    return Environment(
        loader=loader,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )


class PromptTemplate:
    """Compiled prompt templates keyed by name.

    Every template is compiled on construction, so a missing or malformed
    file fails when the parser is built instead of in the middle of a parse.

    Example::

        templates = PromptTemplate()
        text = templates.render(
            "correction",
            errors=["Missing required field: duration"],
            user_input="GET /health",
            previous_response="{}",
        )
    """

    def __init__(
        self, template_dir: Path | None = None, names: Iterable[str] = PROMPT_NAMES
    ) -> None:
        if template_dir is None:
            loader: BaseLoader = PackageLoader("loadspec.parsing", "templates")
            source = "the loadspec package"
        else:
            loader = FileSystemLoader(str(template_dir))
            source = str(template_dir)
        env = _environment(loader)

        self._templates: dict[str, Template] = {}
        for name in names:
            try:
                self._templates[name] = env.get_template(name + TEMPLATE_SUFFIX)
            except TemplateNotFound:
                raise TemplateError(
                    f"Prompt template {name!r} not found in {source}"
                ) from None
            except TemplateSyntaxError as exc:
                raise TemplateError(
                    f"Prompt template {name!r} does not compile "
                    f"(line {exc.lineno}): {exc.message}"
                ) from exc

    def render(self, name: str, **variables: Any) -> str:
        """Render prompt *name* and strip surrounding whitespace.

        Raises:
            TemplateError: If *name* is unknown or a variable is missing.
        """
        template = self._templates.get(name)
        if template is None:
            raise TemplateError(
                f"Unknown prompt template {name!r}; known: {', '.join(self._templates)}"
            )
        try:
            return template.render(**variables).strip()
        except UndefinedError as exc:
            raise TemplateError(
                f"Prompt template {name!r} is missing a value: {exc.message}"
            ) from exc
