# ffrunner/core/renderer.py
# Expands {{placeholders}} into a display string and an argument list.
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Collection, List, Mapping, Optional, Sequence, Tuple

from ffrunner.core.tokenizer import quote_context, tokenize

if TYPE_CHECKING:
    from ffrunner.core.binding import TemplateBinding

PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")
DISPLAY_QUOTE_PATTERN = re.compile(r"[\s\"'$`\\()]")
DOUBLE_QUOTE_SPECIAL_PATTERN = re.compile(r"([\"\\])")
DEFAULT_PROGRAM = "ffmpeg"


@dataclass(frozen=True)
class RenderedCommand:
    """
    A rendered template.

    `arguments` is what gets executed (no program name, nothing escaped);
    `display_string` is for people to read and is never executed.
    """
    arguments: Tuple[str, ...]
    display_string: str

    @property
    def is_complete(self) -> bool:
        return is_complete(self.display_string)

    @property
    def missing_placeholders(self) -> List[str]:
        return find_placeholders(self.display_string)


def find_placeholders(text: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def is_complete(text: str) -> bool:
    return PLACEHOLDER_PATTERN.search(text) is None


def escape_for_display(value: str) -> str:
    """Single-quotes a value that a shell reader would otherwise misread."""
    if not DISPLAY_QUOTE_PATTERN.search(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def _protect_for_tokenizer(value: str, quote: Optional[str]) -> str:
    """
    Encodes `value` so the tokenizer reads it back unchanged, given the quote
    the template is inside of at the placeholder.
    """
    if quote == '"':
        return DOUBLE_QUOTE_SPECIAL_PATTERN.sub(r"\\\1", value)
    if quote == "'":
        return value.replace("'", "'\\''")
    # Outside quotes the value is single-quoted, so whitespace and newlines stay literal
    return "'" + value.replace("'", "'\\''") + "'"


def strip_program(tokens: Sequence[str], program: str = DEFAULT_PROGRAM) -> List[str]:
    """Drops a leading executable token; it is supplied separately at spawn time."""
    if tokens and tokens[0].endswith(program):
        return list(tokens[1:])
    return list(tokens)


def _substitute(command_template: str, lookup: Callable[["re.Match[str]"], Optional[str]]) -> str:
    # One pass over the original match spans, so replacements never shift offsets
    def replace(match: "re.Match[str]") -> str:
        value = lookup(match)
        return match.group(0) if value is None else value

    return PLACEHOLDER_PATTERN.sub(replace, command_template)


def render_display(
    command_template: str,
    values: Mapping[str, str],
    raw_keys: Collection[str] = (),
) -> str:
    """Substitutes `values` for display. Keys missing from `values` stay as placeholders."""
    def lookup(match: "re.Match[str]") -> Optional[str]:
        key = match.group(1)
        if key not in values:
            return None
        return values[key] if key in raw_keys else escape_for_display(values[key])

    return _substitute(command_template, lookup)


def render_arguments(
    command_template: str,
    values: Mapping[str, str],
    raw_keys: Collection[str] = (),
    program: str = DEFAULT_PROGRAM,
) -> List[str]:
    """
    Substitutes `values` and splits the result into an argument list.

    Values of raw keys are inserted verbatim and may therefore expand into
    several arguments. Every other value comes back from the tokenizer
    exactly as given, in or out of quotes.
    """
    def lookup(match: "re.Match[str]") -> Optional[str]:
        key = match.group(1)
        if key not in values:
            return None
        if key in raw_keys:
            return values[key]
        return _protect_for_tokenizer(values[key], quote_context(command_template[:match.start()]))

    return strip_program(tokenize(_substitute(command_template, lookup)), program)


def render_values(
    command_template: str,
    values: Mapping[str, str],
    raw_keys: Collection[str] = (),
    program: str = DEFAULT_PROGRAM,
) -> RenderedCommand:
    """Renders a plain key/value map, without any binding or validation."""
    return RenderedCommand(
        arguments=tuple(render_arguments(command_template, values, raw_keys, program)),
        display_string=render_display(command_template, values, raw_keys),
    )


def render_binding(binding: "TemplateBinding", program: str = DEFAULT_PROGRAM) -> RenderedCommand:
    """
    Renders a template binding, consuming parsed values where available.

    Required parameters left empty are treated as unbound so that their
    placeholder survives and shows up in `missing_placeholders`.
    """
    values = {b.key: b.render_value for b in binding.bindings if not b.is_unbound}
    raw_keys = {b.key for b in binding.bindings if b.definition.skips_escape}
    return render_values(binding.template.command_template, values, raw_keys, program)
