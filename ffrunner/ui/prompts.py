# ffrunner/ui/prompts.py

from typing import Dict, List, Optional, Union

import questionary
from rich.console import Console
from rich.markup import escape

from ffrunner.core.parameters import ParameterDefinition, ParameterType
from ffrunner.core.templates import Template

console = Console()

CUSTOM_CHOICE = "Custom FFmpeg Command"


def ask_for_template(templates: List[Template]) -> Union[Template, str, None]:
    """
    Asks the user to choose a template or a custom command, displaying the
    command string next to each template name.

    Returns the chosen Template, CUSTOM_CHOICE, or None if the user cancels.
    """
    # Pad names so all command strings start at the same column
    max_name_len = max((len(t.name) for t in templates), default=0)

    choices = []
    choice_to_template = {}
    for template in templates:
        display_string = f"{template.name.ljust(max_name_len + 4)}{template.command_template}"
        choices.append(display_string)
        choice_to_template[display_string] = template

    choices.append(CUSTOM_CHOICE)

    console.print("\n[bold cyan]-- Step 1 of 2: Choose Encoding Command --[/bold cyan]")
    chosen_option = questionary.select(
        "Select a template (command is shown on the right), or choose 'Custom':",
        choices=choices,
        use_indicator=True,
    ).ask()

    if chosen_option is None:  # User pressed Ctrl+C
        return None
    if chosen_option == CUSTOM_CHOICE:
        return CUSTOM_CHOICE
    return choice_to_template[chosen_option]


def _ask_for_value(definition: ParameterDefinition, current: str) -> Optional[str]:
    label = definition.display_label
    if definition.placeholder:
        label = f"{label} ({definition.placeholder})"

    def validate(text: str) -> Union[bool, str]:
        result = definition.validate(text)
        return True if result.is_valid else (result.message or "Invalid value.")

    constraints = definition.constraints
    if definition.type is ParameterType.SELECT and constraints and constraints.options:
        default = current if current in constraints.options else None
        return questionary.select(label, choices=list(constraints.options), default=default).ask()

    if definition.type is ParameterType.BOOLEAN:
        answer = questionary.confirm(label, default=current.strip().lower() in ("true", "1", "yes")).ask()
        return None if answer is None else ("true" if answer else "false")

    if definition.type is ParameterType.FILE:
        return questionary.path(label, default=current, validate=validate).ask()

    return questionary.text(label, default=current, validate=validate).ask()


def ask_for_values(template: Template, initial: Optional[Dict[str, str]] = None) -> Optional[Dict[str, str]]:
    """
    Prompts for every parameter of the template, pre-filled with `initial`
    values or the defaults. Returns None if the user cancels.
    """
    values = template.default_values()
    values.update(initial or {})

    console.print(f"\n[bold cyan]-- Parameters for {escape(template.name)} --[/bold cyan]")
    if template.description:
        console.print(f"[dim]{escape(template.description)}[/dim]")

    for definition in template.parameters:
        answer = _ask_for_value(definition, values.get(definition.key, ""))
        if answer is None:
            return None
        values[definition.key] = answer
    return values


def ask_for_final_command(initial_command: str = "") -> Optional[str]:
    """
    Presents a command for final review and editing.

    Returns the final command string or None if the user cancels.
    """
    console.print("\n[bold yellow]-- Step 2 of 2: Review and Finalize Command --[/bold yellow]")
    if initial_command:
        console.print("[dim]You can edit the command below. Press Enter to proceed.[/dim]")
    else:
        console.print("[dim]Enter your custom FFmpeg command below.[/dim]")

    return questionary.text(
        "Final FFmpeg command:",
        default=initial_command,
        validate=lambda text: True if len(text.strip()) > 0 else "Command cannot be empty.",
    ).ask()
