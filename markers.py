"""Back-references from Jira work logs to Harvest time entries.

The writer embeds a marker in every work-log comment and the duplicate
filter looks for it in the comments already on the issue. Both sides go
through the same WorklogMarker so they cannot drift apart.
"""

from typing import Iterator, Protocol


class WorklogMarker(Protocol):
    """Renders a back-reference into a comment and finds it again."""

    def comment(self, time_entry_id: int) -> dict: ...

    def is_present(self, work_logs: list[dict], time_entry_id: int) -> bool: ...


def iter_comment_texts(work_log: dict) -> Iterator[str]:
    """Yield every text node of a work log's Atlassian document comment."""
    comment = work_log.get("comment") if isinstance(work_log, dict) else None
    if not isinstance(comment, dict):
        return
    for paragraph in comment.get("content") or []:
        if not isinstance(paragraph, dict):
            continue
        for node in paragraph.get("content") or []:
            if isinstance(node, dict) and node.get("type") == "text" and isinstance(node.get("text"), str):
                yield node["text"]


class HarvestIdMarker:
    """Plain-text marker: `Harvest time entry ID: <id>`.

    Matching is a substring scan over the comment text, so an id that is a
    substring of another id's comment also counts as present.
    """

    PREFIX = "Harvest time entry ID: "

    def comment(self, time_entry_id: int) -> dict:
        return {
            "version": 1,
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [
                        {"type": "text", "text": f"{self.PREFIX}{time_entry_id}"},
                    ],
                }
            ],
        }

    def is_present(self, work_logs: list[dict], time_entry_id: int) -> bool:
        needle = str(time_entry_id)
        return any(
            needle in text for work_log in work_logs for text in iter_comment_texts(work_log)
        )
