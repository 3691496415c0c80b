"""Unit tests for PromptTemplate."""

from __future__ import annotations

from pathlib import Path

import pytest

from loadspec.parsing.exceptions import TemplateError
from loadspec.parsing.prompt_templates import PromptTemplate


class TestPromptTemplate:
    """Tests for Jinja2 template rendering."""

    def test_render_correction(self) -> None:
        text = PromptTemplate().render(
            "correction",
            errors=["Missing required field: duration"],
            user_input="GET /health",
            previous_response='{"id": "x"}',
        )
        assert "- Missing required field: duration" in text
        assert '"GET /health"' in text
        assert '{"id": "x"}' in text

    def test_system_prompt_keeps_literal_braces(self) -> None:
        text = PromptTemplate().render(
            "system_prompt",
            format_instructions="Parse it.",
            low_confidence=False,
            ambiguity_instructions=[],
        )
        assert "{{requestId}}" in text
        assert "Format-specific instructions: Parse it." in text
        assert "low confidence" not in text

    def test_missing_variable_raises(self) -> None:
        with pytest.raises(TemplateError, match="'system_prompt' is missing a value"):
            PromptTemplate().render("system_prompt")

    def test_unknown_template(self) -> None:
        with pytest.raises(TemplateError, match="Unknown prompt template 'nope'"):
            PromptTemplate().render("nope")


class TestCustomDirectory:
    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(TemplateError, match="not found"):
            PromptTemplate(tmp_path / "absent")

    def test_incomplete_directory(self, tmp_path: Path) -> None:
        (tmp_path / "system_prompt.jinja2").write_text("Only {{ this }}\n")
        with pytest.raises(TemplateError, match="'parse_request' not found"):
            PromptTemplate(tmp_path)

    def test_syntax_error_reported_on_load(self, tmp_path: Path) -> None:
        (tmp_path / "broken.jinja2").write_text("{% if %}\n")
        with pytest.raises(TemplateError, match="does not compile"):
            PromptTemplate(tmp_path, names=["broken"])

    def test_custom_names(self, tmp_path: Path) -> None:
        (tmp_path / "hello.jinja2").write_text("Hello {{ name }}!\n")
        (tmp_path / "notes.txt").write_text("ignored")
        templates = PromptTemplate(tmp_path, names=["hello"])
        assert templates.render("hello", name="loadspec") == "Hello loadspec!"
