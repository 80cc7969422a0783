"""Centralized regex patterns for worklog sync."""

import re


class Patterns:
    """Regex patterns used throughout the sync process."""

    # Date format: YYYY-MM-DD
    DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")

    @staticmethod
    def jira_key(project_key: str) -> re.Pattern:
        """Jira ticket key for one project: FOO-123."""
        return re.compile(rf"({re.escape(project_key)}-\d+)")


def find_jira_keys(notes: str | None, project_key: str) -> list[str]:
    """All non-overlapping ticket keys for `project_key` in `notes`, left to right."""
    return Patterns.jira_key(project_key).findall(notes or "")
