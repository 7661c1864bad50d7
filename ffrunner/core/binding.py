# ffrunner/core/binding.py
# Joins a template's parameter definitions with the values supplied for them.
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from ffrunner.core.parameters import (
    EscapeStrategy,
    ParameterDefinition,
    ParsedValue,
    RawValue,
)
from ffrunner.core.templates import Template


@dataclass(frozen=True)
class ParameterBinding:
    definition: ParameterDefinition
    value: RawValue

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def escape(self) -> EscapeStrategy:
        return self.definition.escape

    @property
    def raw(self) -> str:
        return self.value.raw

    @property
    def parsed(self) -> Optional[ParsedValue]:
        return self.value.parsed

    @property
    def is_valid(self) -> bool:
        return self.value.is_valid

    @property
    def error_message(self) -> Optional[str]:
        return self.value.error_message

    @property
    def is_unbound(self) -> bool:
        """A required parameter with nothing in it keeps its placeholder."""
        return self.definition.required and self.value.is_empty

    @property
    def render_value(self) -> str:
        """The parsed value's canonical form, or the raw text when unparsed."""
        if self.value.parsed is not None:
            return self.value.parsed.as_string()
        return self.value.raw


@dataclass(frozen=True)
class TemplateBinding:
    template: Template
    bindings: Tuple[ParameterBinding, ...]

    @property
    def is_valid(self) -> bool:
        return all(b.is_valid for b in self.bindings)

    @property
    def error_messages(self) -> List[str]:
        return [b.error_message for b in self.bindings if b.error_message]

    def get(self, key: str) -> Optional[ParameterBinding]:
        for b in self.bindings:
            if b.key == key:
                return b
        return None

    def as_dict(self) -> Dict[str, str]:
        return {b.key: b.render_value for b in self.bindings}


def bind(template: Template, values: Mapping[str, str]) -> TemplateBinding:
    """
    Validates and parses a value for every parameter of `template`.

    Parameters missing from `values` fall back to their default. The result
    is built fresh on every call; callers rebind after each edit instead of
    mutating a binding.
    """
    bindings = []
    for definition in template.parameters:
        raw = values.get(definition.key)
        if raw is None:
            raw = definition.default
        value = RawValue(key=definition.key, raw=str(raw)).validated(definition)
        bindings.append(ParameterBinding(definition=definition, value=value))
    return TemplateBinding(template=template, bindings=tuple(bindings))
