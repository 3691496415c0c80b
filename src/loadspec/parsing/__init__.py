"""loadspec parsing pipeline.

- :class:`LoadSpecParser` – Pipeline entry point
- :class:`InputPreprocessor`, :class:`FormatDetector`, :class:`ContextEnhancer` – Pure analysis stages
- :class:`SmartPromptBuilder` – Prompt composition
- :class:`ResponseValidator` – Backend output validation and correction
- :class:`SpecValidator` – Post-parse sanity checks on the finished spec
- :class:`ExplanationEngine` – Confidence, assumptions, warnings and suggestions
- :class:`FallbackParser` – Deterministic rule-based parser
- :class:`ErrorRecoveryCoordinator` – Failure classification and recovery
"""

from loadspec.parsing.context_enhancer import ContextEnhancer
from loadspec.parsing.error_recovery import ErrorRecoveryCoordinator, RecoveryOperations
from loadspec.parsing.exceptions import (
    FallbackParsingError,
    ParsingError,
    ResponseValidationError,
    TemplateError,
)
from loadspec.parsing.explanation import ExplanationEngine
from loadspec.parsing.fallback_parser import FallbackParser, FallbackParseResult
from loadspec.parsing.format_detector import FormatDetector
from loadspec.parsing.models import (
    Duration,
    InputFormat,
    LoadPattern,
    LoadTestSpec,
    ParseContext,
    ParseResult,
    RequestSpec,
    TestType,
)
from loadspec.parsing.parser import LoadSpecParser
from loadspec.parsing.preprocessor import InputPreprocessor
from loadspec.parsing.prompt_builder import PromptPackage, SmartPromptBuilder
from loadspec.parsing.response_validator import ResponseValidator
from loadspec.parsing.spec_validator import SpecValidationReport, SpecValidator

__all__ = [
    "ContextEnhancer",
    "Duration",
    "ErrorRecoveryCoordinator",
    "ExplanationEngine",
    "FallbackParseResult",
    "FallbackParser",
    "FallbackParsingError",
    "FormatDetector",
    "InputFormat",
    "InputPreprocessor",
    "LoadPattern",
    "LoadSpecParser",
    "LoadTestSpec",
    "ParseContext",
    "ParseResult",
    "ParsingError",
    "PromptPackage",
    "RecoveryOperations",
    "RequestSpec",
    "ResponseValidationError",
    "ResponseValidator",
    "SmartPromptBuilder",
    "SpecValidationReport",
    "SpecValidator",
    "TemplateError",
    "TestType",
]
