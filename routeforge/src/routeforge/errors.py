"""Error taxonomy shared by the policy model, adapters, and collaborators.

What:
  Declare the validation error record returned by the validator together with
  the exception types raised by generation, document import, rule-set fetches,
  and the proxy-core runner.

Why:
  Validation failures are data: the editing surface wants every violation at
  once, so they travel as records inside a report instead of as exceptions.
  Everything else is exceptional for the operation that hit it and is raised
  with enough context for the CLI to print a useful line.

How:
  ``ValidationCode`` enumerates the machine-readable codes, ``ValidationError``
  is a frozen dataclass carrying ``code``, ``message`` and a dotted ``path``.
  The remaining classes are plain exception subclasses grouped by concern.

Interfaces:
  :class:`ValidationCode`, :class:`ValidationError`, :class:`GenerationError`,
  :class:`DocumentError`, :class:`ExternalVerdictFailure`, :class:`FetchError`,
  :class:`CoreRunnerError`, :class:`UnknownPresetError`,
  :class:`UnknownRuleSetError`.

Invariants & Safety:
  - ``ValidationError`` is not an exception and is never raised.
  - Codes are stable strings; callers may persist or compare them.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List


class ValidationCode(str, Enum):
    """Machine-readable validation failure categories."""

    UNKNOWN_REFERENCE = "UnknownReference"
    DUPLICATE_TAG = "DuplicateTag"
    CYCLIC_GROUP_REFERENCE = "CyclicGroupReference"
    MISSING_TERMINAL_MATCH_RULE = "MissingTerminalMatchRule"
    UNSUPPORTED_CONDITION_FOR_ENGINE = "UnsupportedConditionForEngine"
    INVALID_VALUE = "InvalidValue"


@dataclass(frozen=True)
class ValidationError:
    """Single structural violation found in a template.

    Attributes:
      code: Category of the violation.
      message: Human-readable explanation naming the offending tag or value.
      path: Dotted location inside the template (``rules[3].target``).
    """

    code: ValidationCode
    message: str
    path: str = ""

    def __str__(self) -> str:
        location = f"{self.path}: " if self.path else ""
        return f"{self.code.value} {location}{self.message}"


def format_errors(errors: Iterable[ValidationError]) -> str:
    """Join validation errors into a newline separated block."""

    return "\n".join(str(error) for error in errors)


class GenerationError(RuntimeError):
    """Raised when a template cannot be expressed in an engine grammar.

    The validator is expected to catch these constructs first; the adapters
    raise this as a last line when they meet one anyway.
    """

    def __init__(self, message: str, errors: Iterable[ValidationError] = ()) -> None:
        super().__init__(message)
        self.errors: List[ValidationError] = list(errors)


class DocumentError(ValueError):
    """Raised when an engine document cannot be read back into the model."""


class ExternalVerdictFailure(RuntimeError):
    """The proxy-core collaborator rejected a generated artifact.

    The message is the collaborator's verdict text, relayed verbatim.
    """

    def __init__(self, engine: str, message: str) -> None:
        super().__init__(message)
        self.engine = engine
        self.message = message


class FetchError(RuntimeError):
    """Raised by fetchers when a remote rule-set cannot be retrieved."""


class CoreRunnerError(RuntimeError):
    """Raised when the proxy-core binary cannot be invoked at all."""


class UnknownPresetError(KeyError):
    """Raised when a preset identifier is not registered."""


class UnknownRuleSetError(KeyError):
    """Raised when a refresh names a rule-set tag absent from the template."""
