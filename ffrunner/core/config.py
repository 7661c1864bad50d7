# config.py
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import toml
import typer

from ffrunner.core.templates import Template, lint_template, usable_templates

logger = logging.getLogger(__name__)

APP_NAME = "ffrunner"
PRESETS_FILE = Path(__file__).parent.parent / "config" / "templates.toml"
CONFIG_DIR_ENV = "FFRUNNER_CONFIG_DIR"

DEFAULT_USER_CONFIG = {
    "ffmpeg_source": "system",
    "ffmpeg_path": "",
    "kill_timeout": 0.5,
    "buffer_limit": 1_000_000,
    "log_level": "WARNING",
}


def get_config_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(typer.get_app_dir(APP_NAME))


def load_user_config(config_file: Optional[Path] = None) -> dict:
    """
    Loads the [user] section from config.toml, over the defaults.

    A missing file means defaults; a file without a [user] section is an
    error, so a typo in the section name does not go unnoticed.
    """
    config_file = config_file or get_config_dir() / "config.toml"
    config = dict(DEFAULT_USER_CONFIG)
    if not config_file.exists():
        return config

    full_config = toml.load(config_file)
    if "user" not in full_config:
        raise KeyError(f"The required [user] section was not found in {config_file.name}")

    config.update(full_config["user"])
    return config


def _parse_templates(data: dict, source: Path) -> Dict[str, Template]:
    parsed = []
    for template_id, details in data.get("templates", {}).items():
        try:
            template = Template.from_dict(template_id, details)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping template '%s' in %s: %s", template_id, source.name, e)
            continue

        for warning in lint_template(template):
            logger.warning("Template '%s' in %s: %s", template_id, source.name, warning)
        parsed.append(template)
    return {template.id: template for template in usable_templates(parsed)}


def load_templates(user_file: Optional[Path] = None) -> List[Template]:
    """
    Loads the built-in templates, then the user's templates.toml on top.

    A user template with the same id replaces the built-in one. Templates
    with fatal problems are logged and left out.
    """
    if not PRESETS_FILE.exists():
        raise FileNotFoundError(f"{PRESETS_FILE.name} not found!")
    templates = _parse_templates(toml.load(PRESETS_FILE), PRESETS_FILE)

    user_file = user_file or get_config_dir() / "templates.toml"
    if user_file.exists():
        templates.update(_parse_templates(toml.load(user_file), user_file))

    return list(templates.values())


def find_template(templates: List[Template], template_id: str) -> Optional[Template]:
    for template in templates:
        if template.id == template_id:
            return template
    return None
