"""Structured error objects for the wpverify verifier.

Every error is machine-readable: a kind, a message and a details dict that
serialises to JSON. Exceptions wrap one of these records so callers can
either catch them or dump them straight into a report.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    SPECIFICATION_ERROR = "specification_error"
    VERIFICATION_FAILED = "verification_failed"
    INCONCLUSIVE = "inconclusive"
    LOAD_ERROR = "load_error"
    CONFIG_ERROR = "config_error"
    INTERNAL_ERROR = "internal_error"


@dataclass
class VerifierError:
    kind: ErrorKind
    message: str
    function: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.function:
            d["function"] = self.function
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        where = f" in '{self.function}'" if self.function else ""
        return f"[{self.kind.value}]{where}: {self.message}"


def undefined_reference_error(
    name: str,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"Unknown formula or function '{name}'",
        function=function,
        details={"name": name},
    )


def undefined_variable_error(
    name: str,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"Unknown variable '{name}'",
        function=function,
        details={"name": name},
    )


def arity_error(
    name: str,
    expected: int,
    actual: int,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"'{name}' expects {expected} argument(s), got {actual}",
        function=function,
        details={"name": name, "expected": expected, "actual": actual},
    )


def missing_ensures_error(
    name: str,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"Function '{name}' is used as a formula but has no ensures clause",
        function=function,
        details={"name": name},
    )


def output_index_error(
    name: str,
    output: int,
    available: int,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"Call to '{name}' selects result #{output} but it returns {available}",
        function=function,
        details={"name": name, "output": output, "available": available},
    )


def assignment_arity_error(
    targets: int,
    values: int,
    function: Optional[str] = None,
) -> VerifierError:
    return VerifierError(
        kind=ErrorKind.SPECIFICATION_ERROR,
        message=f"Assignment of {values} value(s) to {targets} target(s)",
        function=function,
        details={"targets": targets, "values": values},
    )


def load_error(message: str, path: str = "") -> VerifierError:
    details: dict[str, Any] = {}
    if path:
        details["path"] = path
    return VerifierError(kind=ErrorKind.LOAD_ERROR, message=message, details=details)


def config_error(message: str, key: str = "") -> VerifierError:
    details: dict[str, Any] = {}
    if key:
        details["key"] = key
    return VerifierError(kind=ErrorKind.CONFIG_ERROR, message=message, details=details)


class WPVerifyException(Exception):
    """Exception wrapping one or more VerifierErrors."""

    def __init__(self, errors: list[VerifierError] | VerifierError):
        if isinstance(errors, VerifierError):
            errors = [errors]
        self.errors = errors
        super().__init__(self._format())

    @property
    def error(self) -> VerifierError:
        return self.errors[0]

    def _format(self) -> str:
        return "\n".join(str(e) for e in self.errors)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps([e.to_dict() for e in self.errors], indent=indent)


class SpecificationError(WPVerifyException):
    """A predicate references something undefined or with the wrong arity."""


class ModuleLoadError(WPVerifyException):
    """A module document could not be turned into an AST."""


class ConfigError(WPVerifyException):
    """A configuration file holds an invalid value."""


class VerificationFailed(WPVerifyException):
    """Raised by ModuleReport.raise_for_status when a function does not verify."""

    def __init__(self, errors: list[VerifierError] | VerifierError, report: Any = None):
        self.report = report
        super().__init__(errors)
