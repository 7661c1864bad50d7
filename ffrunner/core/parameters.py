# ffrunner/core/parameters.py
# Parameter definitions, typed values and field-level validation.
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

TRUE_STRINGS = ("true", "1", "yes")


class ParameterType(str, Enum):
    """The kind of input control a parameter is edited with."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    FILE = "file"
    SELECT = "select"


class ParameterRole(str, Enum):
    """
    What the parameter stands for on the command line.

    Recorded for documentation and tooling only; rendering never reorders
    tokens based on it.
    """
    POSITIONAL = "positional"
    FLAG = "flag"
    FLAG_VALUE = "flag_value"
    RAW = "raw"


class EscapeStrategy(str, Enum):
    SHELL = "shell"
    RAW = "raw"


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    FILE = "file"


class ValidationErrorKind(str, Enum):
    EMPTY = "empty"
    INVALID_NUMBER = "invalid_number"
    OUT_OF_RANGE = "out_of_range"
    INVALID_OPTION = "invalid_option"
    FILE_NOT_FOUND = "file_not_found"
    INVALID_FILE_TYPE = "invalid_file_type"


def _parse_number(text: str) -> Optional[float]:
    # float() also takes digit separators ("1_000"), which are not numbers here
    if "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _format_number(number: float) -> str:
    if number.is_integer() and abs(number) < 1e16:
        return str(int(number))
    return repr(number)


@dataclass(frozen=True)
class Constraints:
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    options: Optional[Tuple[str, ...]] = None
    file_types: Optional[Tuple[str, ...]] = None
    is_output_file: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "Constraints":
        options = data.get("options")
        file_types = data.get("file_types")
        return cls(
            minimum=data.get("min"),
            maximum=data.get("max"),
            options=tuple(str(o) for o in options) if options is not None else None,
            file_types=tuple(str(t) for t in file_types) if file_types is not None else None,
            is_output_file=bool(data.get("output_file", False)),
        )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one raw value. No error kind means valid."""
    error: Optional[ValidationErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def invalid(cls, error: ValidationErrorKind, message: str) -> "ValidationResult":
        return cls(error=error, message=message)

    @property
    def is_valid(self) -> bool:
        return self.error is None


VALID = ValidationResult()


@dataclass(frozen=True)
class ParsedValue:
    kind: ValueKind
    value: Any

    def as_string(self) -> str:
        """Canonical string form used when rendering a command."""
        if self.kind is ValueKind.NUMBER:
            return _format_number(self.value)
        if self.kind is ValueKind.BOOLEAN:
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class ParameterDefinition:
    """
    One input of a template: how it is edited, validated and escaped.

    Definitions are immutable once loaded. `key` matches the `{{key}}`
    placeholder in the template's command string.
    """
    key: str
    label: str = ""
    type: ParameterType = ParameterType.STRING
    default: str = ""
    required: bool = False
    role: Optional[ParameterRole] = None
    escape: EscapeStrategy = EscapeStrategy.SHELL
    constraints: Optional[Constraints] = None
    placeholder: Optional[str] = None

    @property
    def display_label(self) -> str:
        return self.label or self.key

    @property
    def skips_escape(self) -> bool:
        return self.escape is EscapeStrategy.RAW

    @classmethod
    def from_dict(cls, data: dict) -> "ParameterDefinition":
        """
        Builds a definition from a TOML/JSON table.

        Accepts the legacy `skip_escape = true` switch as an alias for
        `escape = "raw"`.
        """
        if "escape" in data:
            escape = EscapeStrategy(data["escape"])
        elif data.get("skip_escape"):
            escape = EscapeStrategy.RAW
        else:
            escape = EscapeStrategy.SHELL

        constraints = data.get("constraints")
        role = data.get("role")
        default = data.get("default", "")

        return cls(
            key=data["key"],
            label=data.get("label", ""),
            type=ParameterType(data.get("type", "string")),
            default="" if default is None else str(default),
            required=bool(data.get("required", False)),
            role=ParameterRole(role) if role else None,
            escape=escape,
            constraints=Constraints.from_dict(constraints) if constraints else None,
            placeholder=data.get("placeholder"),
        )

    def validate(self, raw: str) -> ValidationResult:
        """Checks a raw value against this definition's type and constraints."""
        label = self.display_label
        constraints = self.constraints or Constraints()
        stripped = raw.strip()

        if not stripped:
            if self.required:
                return ValidationResult.invalid(ValidationErrorKind.EMPTY, f"{label} is required")
            return VALID

        if self.type is ParameterType.NUMBER:
            number = _parse_number(stripped)
            if number is None or not math.isfinite(number):
                return ValidationResult.invalid(
                    ValidationErrorKind.INVALID_NUMBER, f"{label} must be a number (got {raw!r})"
                )
            if constraints.minimum is not None and number < constraints.minimum:
                return ValidationResult.invalid(
                    ValidationErrorKind.OUT_OF_RANGE,
                    f"{label} must be at least {_format_number(float(constraints.minimum))}",
                )
            if constraints.maximum is not None and number > constraints.maximum:
                return ValidationResult.invalid(
                    ValidationErrorKind.OUT_OF_RANGE,
                    f"{label} must be at most {_format_number(float(constraints.maximum))}",
                )

        elif self.type is ParameterType.SELECT:
            if constraints.options is not None and raw not in constraints.options:
                choices = ", ".join(constraints.options)
                return ValidationResult.invalid(
                    ValidationErrorKind.INVALID_OPTION,
                    f"{label} must be one of: {choices} (got {raw!r})",
                )

        elif self.type is ParameterType.FILE:
            path = Path(raw)
            if self.required and not constraints.is_output_file and not path.exists():
                return ValidationResult.invalid(
                    ValidationErrorKind.FILE_NOT_FOUND, f"{label}: file not found ({raw})"
                )
            if constraints.file_types:
                allowed = [t.lstrip(".").lower() for t in constraints.file_types]
                if path.suffix.lstrip(".").lower() not in allowed:
                    return ValidationResult.invalid(
                        ValidationErrorKind.INVALID_FILE_TYPE,
                        f"{label}: unsupported file type (allowed: {', '.join(constraints.file_types)})",
                    )

        return VALID

    def parse(self, raw: str) -> Optional[ParsedValue]:
        """Turns a raw string into a typed value, or None when it cannot."""
        if self.type is ParameterType.NUMBER:
            number = _parse_number(raw.strip())
            return None if number is None else ParsedValue(ValueKind.NUMBER, number)
        if self.type is ParameterType.BOOLEAN:
            return ParsedValue(ValueKind.BOOLEAN, raw.strip().lower() in TRUE_STRINGS)
        if self.type is ParameterType.FILE:
            if not raw:
                return None
            return ParsedValue(ValueKind.FILE, Path(raw))
        return ParsedValue(ValueKind.STRING, raw)


@dataclass(frozen=True)
class RawValue:
    """What the user typed for one parameter, plus its parse/validation outcome."""
    key: str
    raw: str
    parsed: Optional[ParsedValue] = None
    validation: ValidationResult = field(default=VALID)

    @property
    def is_empty(self) -> bool:
        return not self.raw.strip()

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def error_message(self) -> Optional[str]:
        return self.validation.message

    def validated(self, definition: ParameterDefinition) -> "RawValue":
        """Returns a copy validated against `definition`, parsed when valid."""
        validation = definition.validate(self.raw)
        parsed = None
        if validation.is_valid and not self.is_empty:
            parsed = definition.parse(self.raw)
        return replace(self, parsed=parsed, validation=validation)
