# ffrunner/core/planner.py
# The single way user input becomes an ExecutionPlan.
from dataclasses import dataclass
from typing import Collection, List, Mapping, Optional, Tuple, Union

from ffrunner.core.binding import TemplateBinding, bind
from ffrunner.core.errors import (
    EmptyCommandError,
    RenderingFailedError,
    ValidationFailedError,
)
from ffrunner.core.models import ExecutionPlan
from ffrunner.core.renderer import DEFAULT_PROGRAM, RenderedCommand, render_binding
from ffrunner.core.security import ALLOWED_EXECUTABLES, CommandValidation, validate_command
from ffrunner.core.templates import Template
from ffrunner.core.tokenizer import program_name


@dataclass(frozen=True)
class CommandPlanner:
    """
    Turns a template plus values, or a raw command string, into an
    ExecutionPlan.

    Holds configuration only and performs no I/O beyond the file checks of
    parameter validation, so one instance can be shared freely.
    """
    program: str = DEFAULT_PROGRAM
    allowed_executables: Collection[str] = ALLOWED_EXECUTABLES

    def prepare(
        self, source: Union[Template, str], values: Optional[Mapping[str, str]] = None
    ) -> ExecutionPlan:
        if isinstance(source, Template):
            return self.prepare_template(source, values or {})
        return self.prepare_command(source)

    def prepare_template(self, template: Template, values: Mapping[str, str]) -> ExecutionPlan:
        return self.prepare_binding(bind(template, values))

    def prepare_binding(self, binding: TemplateBinding) -> ExecutionPlan:
        """
        Raises:
            ValidationFailedError: with every binding error, not just the first.
            RenderingFailedError: naming placeholders left unresolved.
        """
        if not binding.is_valid:
            raise ValidationFailedError(binding.error_messages)

        program = self.program_for(binding.template.command_template)
        rendered = render_binding(binding, program)
        if not rendered.is_complete:
            raise RenderingFailedError(rendered.missing_placeholders)

        return ExecutionPlan.from_binding(binding, rendered, program)

    def prepare_command(self, command: str) -> ExecutionPlan:
        if not command.strip():
            raise EmptyCommandError()

        validation = validate_command(command, self.allowed_executables)
        if not validation.is_valid:
            raise ValidationFailedError([validation.error_message or "invalid command"], validation)

        return ExecutionPlan.from_command(command)

    def preview(self, template: Template, values: Mapping[str, str]) -> RenderedCommand:
        """Renders without enforcing completeness. For live feedback only, never for execution."""
        return render_binding(bind(template, values), self.program_for(template.command_template))

    def program_for(self, command_template: str) -> str:
        """The allowed executable a template starts with, else the default program."""
        name = program_name(command_template)
        return name if name in self.allowed_executables else self.program

    def validate_command(self, command: str) -> CommandValidation:
        return validate_command(command, self.allowed_executables)

    def validate_template_values(
        self, template: Template, values: Mapping[str, str]
    ) -> Tuple[bool, List[str]]:
        binding = bind(template, values)
        return binding.is_valid, binding.error_messages
