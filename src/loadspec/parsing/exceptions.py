"""Custom exceptions for the parsing pipeline."""

from __future__ import annotations


class ParsingError(Exception):
    """Base exception for all parsing pipeline errors."""


class TemplateError(ParsingError):
    """Raised when a prompt template cannot be rendered.

    Examples: missing variables, invalid template syntax, template not found.
    """


class ResponseValidationError(ParsingError):
    """Raised when backend output cannot be turned into a valid spec.

    Attributes:
        errors: The structural problems found in the last response.
        raw_response: The last response text examined.
    """

    def __init__(self, errors: list[str], raw_response: str = "") -> None:
        self.errors = list(errors)
        self.raw_response = raw_response
        summary = "; ".join(self.errors[:5]) or "unknown error"
        super().__init__(f"Response validation failed: {summary}")


class FallbackParsingError(ParsingError):
    """Raised when the fallback path itself cannot produce a spec."""
