# ffrunner/core/templates.py
# Template records and structural checks on them.
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ffrunner.core.parameters import ParameterDefinition
from ffrunner.core.renderer import find_placeholders

RAW_COMMAND_ID = "raw-command"


@dataclass(frozen=True)
class Template:
    """
    A reusable FFmpeg command with `{{key}}` placeholders.

    Templates are plain data; where they come from (built-in TOML, user
    files) is the loader's business.
    """
    id: str
    name: str
    command_template: str
    parameters: Tuple[ParameterDefinition, ...] = ()
    description: str = ""
    category: Optional[str] = None
    icon: Optional[str] = None

    def parameter(self, key: str) -> Optional[ParameterDefinition]:
        for definition in self.parameters:
            if definition.key == key:
                return definition
        return None

    def default_values(self) -> dict:
        return {p.key: p.default for p in self.parameters}

    @classmethod
    def from_dict(cls, template_id: str, data: dict) -> "Template":
        return cls(
            id=template_id,
            name=data.get("name", ""),
            command_template=data.get("command", ""),
            parameters=tuple(ParameterDefinition.from_dict(p) for p in data.get("parameters", [])),
            description=data.get("description", ""),
            category=data.get("category"),
            icon=data.get("icon"),
        )


class WarningKind(str, Enum):
    MISSING_ID = "missing_id"
    EMPTY_NAME = "empty_name"
    EMPTY_COMMAND_TEMPLATE = "empty_command_template"
    DUPLICATE_KEY = "duplicate_key"
    UNUSED_PARAMETER = "unused_parameter"
    UNDECLARED_PLACEHOLDER = "undeclared_placeholder"


FATAL_WARNINGS = frozenset(
    {WarningKind.MISSING_ID, WarningKind.EMPTY_COMMAND_TEMPLATE, WarningKind.DUPLICATE_KEY}
)


@dataclass(frozen=True)
class TemplateWarning:
    kind: WarningKind
    key: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.kind in FATAL_WARNINGS

    def __str__(self) -> str:
        messages = {
            WarningKind.MISSING_ID: "template has no id",
            WarningKind.EMPTY_NAME: "template has no name",
            WarningKind.EMPTY_COMMAND_TEMPLATE: "template has no command",
            WarningKind.DUPLICATE_KEY: f"parameter '{self.key}' is declared more than once",
            WarningKind.UNUSED_PARAMETER: f"parameter '{self.key}' is not used in the command",
            WarningKind.UNDECLARED_PLACEHOLDER: f"placeholder '{{{{{self.key}}}}}' has no parameter",
        }
        return messages[self.kind]


def lint_template(template: Template) -> List[TemplateWarning]:
    """Returns every structural problem found in `template` (empty if none)."""
    warnings: List[TemplateWarning] = []

    if not template.id:
        warnings.append(TemplateWarning(WarningKind.MISSING_ID))
    if not template.name:
        warnings.append(TemplateWarning(WarningKind.EMPTY_NAME))
    if not template.command_template.strip():
        warnings.append(TemplateWarning(WarningKind.EMPTY_COMMAND_TEMPLATE))

    used = find_placeholders(template.command_template)
    seen = set()
    for definition in template.parameters:
        if definition.key in seen:
            warnings.append(TemplateWarning(WarningKind.DUPLICATE_KEY, definition.key))
            continue
        seen.add(definition.key)
        if definition.key not in used:
            warnings.append(TemplateWarning(WarningKind.UNUSED_PARAMETER, definition.key))

    for key in used:
        if key not in seen:
            warnings.append(TemplateWarning(WarningKind.UNDECLARED_PLACEHOLDER, key))

    return warnings


def usable_templates(templates: List[Template]) -> List[Template]:
    """Drops templates with fatal lint warnings."""
    return [t for t in templates if not any(w.is_fatal for w in lint_template(t))]
