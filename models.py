"""Data models for Harvest to Jira sync."""

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from markers import HarvestIdMarker, WorklogMarker

if TYPE_CHECKING:
    from clients import JiraClient


@dataclass(frozen=True)
class HarvestUser:
    """The Harvest user a time entry belongs to."""

    id: int
    name: str


@dataclass(frozen=True)
class HarvestProject:
    """The Harvest project a time entry is booked on."""

    id: int
    name: str


@dataclass(frozen=True)
class TimeEntry:
    """A time entry from Harvest."""

    id: int
    is_closed: bool
    notes: str | None
    project: HarvestProject
    rounded_hours: float
    spent_date: date
    user: HarvestUser

    @classmethod
    def from_api(cls, data: dict) -> "TimeEntry":
        """Build a TimeEntry from a raw /v2/time_entries item."""
        return cls(
            id=data["id"],
            is_closed=bool(data.get("is_closed")),
            notes=data.get("notes"),
            project=HarvestProject(data["project"]["id"], data["project"].get("name", "")),
            rounded_hours=float(data.get("rounded_hours") or 0),
            spent_date=date.fromisoformat(data["spent_date"]),
            user=HarvestUser(data["user"]["id"], data["user"].get("name", "")),
        )


@dataclass(frozen=True)
class UserConfig:
    """The `user` section of the config file."""

    harvest_access_token: str
    harvest_account_id: int
    harvest_user_id: int | None = None


@dataclass(frozen=True)
class ProjectConfig:
    """Maps one Harvest project to a Jira project and its credentials."""

    harvest_id: int
    jira_project_key: str
    atlassian_domain: str
    atlassian_api_token: str
    atlassian_account_email: str

    @property
    def jira_base_url(self) -> str:
        return f"https://{self.atlassian_domain}.atlassian.net"


@dataclass(frozen=True)
class Config:
    """Whole config file, loaded once per run."""

    user: UserConfig
    projects: tuple[ProjectConfig, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        user = data.get("user") or {}
        return cls(
            user=UserConfig(
                harvest_access_token=user.get("harvestAccessToken", ""),
                harvest_account_id=user.get("harvestAccountId", 0),
                harvest_user_id=user.get("harvestUserId"),
            ),
            projects=tuple(
                ProjectConfig(
                    harvest_id=p["harvestId"],
                    jira_project_key=p["jiraProjectKey"],
                    atlassian_domain=p["atlassianDomain"],
                    atlassian_api_token=p["atlassianApiToken"],
                    atlassian_account_email=p["atlassianAccountEmail"],
                )
                for p in data.get("projects") or []
            ),
        )

    def find_project(self, harvest_project_id: int) -> ProjectConfig | None:
        """First project section configured for a Harvest project id."""
        for project in self.projects:
            if project.harvest_id == harvest_project_id:
                return project
        return None


@dataclass
class JiraIssue:
    """A resolved Jira issue.

    `embedded_worklogs` holds `fields.worklog` from the issue payload when
    Jira returned the complete list inline, otherwise None.
    """

    key: str
    issue_type: str | None = None
    parent_key: str | None = None
    embedded_worklogs: list[dict] | None = None

    @classmethod
    def from_api(cls, data: dict) -> "JiraIssue":
        fields = data.get("fields") or {}
        worklog = fields.get("worklog") or {}
        embedded = None
        if "worklogs" in worklog:
            worklogs = worklog.get("worklogs") or []
            if worklog.get("total", len(worklogs)) <= len(worklogs):
                embedded = worklogs
        return cls(
            key=data["key"],
            issue_type=(fields.get("issuetype") or {}).get("name"),
            parent_key=(fields.get("parent") or {}).get("key"),
            embedded_worklogs=embedded,
        )


@dataclass
class SyncRecord:
    """One time entry on its way through the pipeline.

    Stages fill the optional fields in order and never clear them.
    """

    time_entry: TimeEntry
    config: Config
    project_config: ProjectConfig | None = None
    user_tz: str | None = None
    issue: JiraIssue | None = None
    work_logs: list[dict] | None = None


@dataclass
class SyncState:
    """State shared by the stages of a single sync run."""

    dry_run: bool = True
    log_to_epic: bool = False
    marker: WorklogMarker = field(default_factory=HarvestIdMarker)
    user_tz: str | None = None  # memoized after the first successful lookup
    jira_clients: dict[tuple[str, str], "JiraClient"] = field(default_factory=dict)  # (domain, email)
    logged: int = 0
    skipped: int = 0
    failed: int = 0
    total_hours: float = 0.0
