"""Utility functions for Harvest to Jira sync."""

import json
import logging
import os
from datetime import date, timedelta

from rich.logging import RichHandler

from models import Config

# File paths
CONFIG_DIR = "config"
CONFIG_FILE = os.path.join(CONFIG_DIR, "projects.json")

PROJECT_KEYS = [
    "harvestId",
    "jiraProjectKey",
    "atlassianDomain",
    "atlassianApiToken",
    "atlassianAccountEmail",
]


class ConfigError(Exception):
    """Config file missing, unreadable or incomplete."""


def load_config(path: str = CONFIG_FILE) -> dict:
    """Load the projects config file."""
    with open(path) as f:
        return json.load(f)


def validate_config(config: dict) -> list[str]:
    """Validate config structure and return list of error messages.

    Returns:
        Empty list if valid, otherwise list of error messages.
    """
    if not isinstance(config, dict):
        return ["Config must be a JSON object"]

    errors = []

    # Check Harvest credentials
    user = config.get("user")
    if not isinstance(user, dict):
        errors.append("Missing section 'user'")
    else:
        for key in ["harvestAccessToken", "harvestAccountId"]:
            if not user.get(key):
                errors.append(f"Missing user.{key}")

    # Check projects
    projects = config.get("projects") or []
    if not isinstance(projects, list):
        errors.append("'projects' must be a list")
        return errors
    for i, project in enumerate(projects):
        if not isinstance(project, dict):
            errors.append(f"projects[{i}] must be an object")
            continue
        for key in PROJECT_KEYS:
            if not project.get(key):
                errors.append(f"Missing projects[{i}].{key}")

    return errors


def load_config_safe(path: str = CONFIG_FILE) -> Config:
    """Load and validate the config file.

    Raises:
        ConfigError: with a user-friendly message when the file can't be used.
    """
    try:
        raw = load_config(path)
    except OSError as e:
        raise ConfigError(f"Tried to read config file {path} but couldn't: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Config file {path} is not valid JSON (line {e.lineno}, column {e.colno}: {e.msg})"
        ) from e

    errors = validate_config(raw)
    if errors:
        raise ConfigError(f"Config file {path} is incomplete:\n" + "\n".join(f"  - {err}" for err in errors))

    return Config.from_dict(raw)


def most_recent_monday(today: date | None = None) -> date:
    """Monday on or before `today`."""
    today = today or date.today()
    return today - timedelta(days=today.weekday())


def get_week_window(day: date) -> tuple[date, date]:
    """Half-open [sunday, next sunday) window for the week containing `day`."""
    # date.weekday(): Monday == 0 ... Sunday == 6
    sunday_before = day - timedelta(days=(day.weekday() + 1) % 7)
    return sunday_before, sunday_before + timedelta(weeks=1)


def setup_logging(level: str | None = None) -> None:
    """Route all log records through rich; level defaults to $LOG_LEVEL or DEBUG."""
    level = (level or os.environ.get("LOG_LEVEL") or "DEBUG").upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, markup=False, show_path=False)],
        force=True,
    )
    # urllib3 logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
