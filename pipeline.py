"""Harvest -> Jira enrichment pipeline.

Every stage is an async generator that pulls one record from the stage
before it, so a record runs through every stage (or is dropped) before
the next one is fetched. Only one HTTP request is in flight at a time,
which is what makes the memoized timezone in SyncState safe.
"""

import asyncio
import json
import logging
from datetime import date, datetime, time
from typing import AsyncIterable, AsyncIterator, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clients import ApiError, HarvestClient, JiraClient
from markers import WorklogMarker
from models import Config, JiraIssue, ProjectConfig, SyncRecord, SyncState, TimeEntry
from patterns import find_jira_keys

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
JIRA_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.000%z"
EPIC_ISSUE_TYPE = "Epic"
MAX_PARENT_HOPS = 10

Records = AsyncIterable[SyncRecord]


def describe(entry: TimeEntry) -> str:
    return f"time entry {entry.id} from {entry.spent_date.isoformat()}"


def jira_client(state: SyncState, project: ProjectConfig) -> JiraClient:
    """One client per Atlassian site and account, reused for the whole run."""
    key = (project.atlassian_domain, project.atlassian_account_email)
    if key not in state.jira_clients:
        state.jira_clients[key] = JiraClient.for_project(project)
    return state.jira_clients[key]


# ============================================================================
# Source
# ============================================================================


async def fetch_time_entries(
    harvest: HarvestClient, config: Config, date_from: date, date_to: date
) -> AsyncIterator[SyncRecord]:
    """Yield every time entry in [date_from, date_to], walking Harvest's pages.

    Any failure raises ApiError and ends the run.
    """
    page = 1
    while True:
        data = await asyncio.to_thread(harvest.get_time_entries_page, page, date_from, date_to)
        if not isinstance(data, dict):
            raise ApiError(f"Harvest: Unexpected response for time entries page {page}")

        for raw in data.get("time_entries") or []:
            try:
                entry = TimeEntry.from_api(raw)
            except (KeyError, TypeError, ValueError) as e:
                raise ApiError(f"Harvest: Malformed time entry on page {page}: {e!r}") from e
            yield SyncRecord(time_entry=entry, config=config)

        next_page = data.get("next_page")
        if not next_page:
            break
        page = next_page


# ============================================================================
# Enrichment
# ============================================================================


async def enrich_with_project_config(records: Records) -> AsyncIterator[SyncRecord]:
    async for record in records:
        entry = record.time_entry
        record.project_config = record.config.find_project(entry.project.id)
        if record.project_config is None:
            logger.info(
                f"{describe(entry)} associated with unrecognized Harvest project "
                f"{entry.project.id} ({entry.project.name}) - notes: {entry.notes!r}"
            )
        yield record


async def resolve_user_tz(record: SyncRecord, state: SyncState) -> str | None:
    """Look up the operator's Jira timezone; None when it can't be determined."""
    project = record.project_config
    client = jira_client(state, project)
    try:
        users = await asyncio.to_thread(
            client.find_assignable_users,
            project.jira_project_key,
            project.atlassian_account_email,
        )
    except ApiError as e:
        logger.warning(
            f"Couldn't fetch user's timezone setting for {describe(record.time_entry)} - "
            f"{e} (status {e.status_code}) - using {DEFAULT_TIMEZONE}"
        )
        return None

    if not users:
        logger.warning(
            f"Couldn't fetch user's timezone setting - no user matching "
            f"{project.atlassian_account_email} - using {DEFAULT_TIMEZONE}"
        )
        return None

    tz = users[0].get("timeZone") if isinstance(users[0], dict) else None
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, TypeError, ValueError, OSError):
        logger.warning(f"Jira returned unknown timezone {tz!r} - using {DEFAULT_TIMEZONE}")
        return None
    return tz


async def enrich_with_user_tz(records: Records, state: SyncState) -> AsyncIterator[SyncRecord]:
    """Attach the operator's timezone, looked up once per run.

    A failed lookup is not cached, so the next record tries again.
    """
    async for record in records:
        if state.user_tz is None:
            state.user_tz = await resolve_user_tz(record, state)
        record.user_tz = state.user_tz or DEFAULT_TIMEZONE
        yield record


def parse_issue(data: dict, jira_key: str) -> JiraIssue:
    """JiraIssue from an issue payload; ApiError if the payload is unusable."""
    try:
        return JiraIssue.from_api(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise ApiError(f"Jira: Malformed issue payload for {jira_key}: {e!r}") from e


async def roll_up_to_epic(client: JiraClient, issue: JiraIssue) -> JiraIssue:
    """Follow parent links from `issue` until an Epic is reached."""
    hops = 0
    while issue.issue_type != EPIC_ISSUE_TYPE:
        if not issue.parent_key:
            logger.info(f"Found issue without epic - {issue.key} has no parent")
            break
        if hops >= MAX_PARENT_HOPS:
            logger.warning(f"Gave up looking for an epic after {hops} parents - using {issue.key}")
            break
        data = await asyncio.to_thread(client.get_issue, issue.parent_key)
        issue = parse_issue(data, issue.parent_key)
        hops += 1
    return issue


async def enrich_with_jira_issue(records: Records, state: SyncState) -> AsyncIterator[SyncRecord]:
    async for record in records:
        entry = record.time_entry
        project = record.project_config

        keys = find_jira_keys(entry.notes, project.jira_project_key)
        if not keys:
            logger.warning(f"Jira key missing from Harvest {describe(entry)} - notes: {entry.notes!r}")
            yield record
            continue
        if len(keys) > 1:
            logger.info(
                f"Found multiple Jira tickets ({', '.join(keys)}) in Harvest "
                f"{describe(entry)} - choosing first"
            )

        jira_key = keys[0]
        client = jira_client(state, project)
        try:
            issue = parse_issue(await asyncio.to_thread(client.get_issue, jira_key), jira_key)
            if state.log_to_epic:
                issue = await roll_up_to_epic(client, issue)
        except ApiError as e:
            logger.error(
                f"Encountered error fetching Jira issue {jira_key} for {describe(entry)}: "
                f"{e} (status {e.status_code}) {e.body or ''}".rstrip()
            )
        else:
            record.issue = issue
        yield record


async def enrich_with_work_logs(records: Records, state: SyncState) -> AsyncIterator[SyncRecord]:
    """Attach the issue's existing worklogs.

    Uses the list embedded in the issue payload when it is complete, else
    pages through the worklog endpoint. On failure the field stays unset.
    """
    async for record in records:
        issue = record.issue
        if issue.embedded_worklogs is not None:
            record.work_logs = list(issue.embedded_worklogs)
        else:
            client = jira_client(state, record.project_config)
            try:
                record.work_logs = await asyncio.to_thread(client.get_all_worklogs, issue.key)
            except ApiError as e:
                logger.error(
                    f"Encountered error fetching worklogs of {issue.key} for "
                    f"{describe(record.time_entry)}: {e} (status {e.status_code})"
                )
        yield record


# ============================================================================
# Filters
# ============================================================================


def has_project_config(record: SyncRecord) -> bool:
    return record.project_config is not None


def has_jira_issue(record: SyncRecord) -> bool:
    return record.issue is not None


def has_work_logs(record: SyncRecord) -> bool:
    return record.work_logs is not None


def can_log_to_jira(record: SyncRecord, marker: WorklogMarker) -> bool:
    """Business rules, checked in order; the first failing one is reported."""
    entry = record.time_entry
    expected_user_id = record.config.user.harvest_user_id

    if not entry.is_closed:
        logger.info(f"Harvest {describe(entry)} is not closed")
        return False
    if expected_user_id and expected_user_id != entry.user.id:
        logger.warning(
            f"Harvest {describe(entry)} associated with unrecognized user "
            f"{entry.user.id} ({entry.user.name})"
        )
        return False
    if marker.is_present(record.work_logs, entry.id):
        logger.info(f"Harvest {describe(entry)} already logged to {record.issue.key}")
        return False
    return True


async def keep(
    predicate: Callable[[SyncRecord], bool], records: Records, state: SyncState
) -> AsyncIterator[SyncRecord]:
    """Forward records passing `predicate`, count the rest as skipped."""
    async for record in records:
        if predicate(record):
            yield record
        else:
            state.skipped += 1


# ============================================================================
# Writer
# ============================================================================


def jira_started(spent_date: date, tz: str) -> str:
    """Noon on `spent_date` in `tz`, in Jira's `started` format."""
    try:
        zone = ZoneInfo(tz)
    except (ZoneInfoNotFoundError, TypeError, ValueError, OSError):
        zone = ZoneInfo(DEFAULT_TIMEZONE)
    return datetime.combine(spent_date, time(12, 0), tzinfo=zone).strftime(JIRA_DATETIME_FORMAT)


def build_worklog_payload(record: SyncRecord, marker: WorklogMarker) -> dict:
    entry = record.time_entry
    return {
        "timeSpentSeconds": int(round(entry.rounded_hours * 60 * 60)),
        "notifyUsers": False,
        "comment": marker.comment(entry.id),
        "started": jira_started(entry.spent_date, record.user_tz),
    }


async def log_to_jira(records: Records, state: SyncState) -> AsyncIterator[SyncRecord]:
    """Create one worklog per record (or just log it in dry-run mode).

    Yields records that were logged, or would have been; failed submissions
    are counted and dropped.
    """
    async for record in records:
        entry = record.time_entry
        jira_key = record.issue.key
        payload = build_worklog_payload(record, state.marker)

        if state.dry_run:
            logger.debug(
                f"Running in dry mode - skipping worklog creation on Jira issue ({jira_key}): "
                f"{json.dumps(payload)}"
            )
            yield record
            continue

        client = jira_client(state, record.project_config)
        try:
            await asyncio.to_thread(client.add_worklog, jira_key, payload)
        except ApiError as e:
            logger.error(
                f"Logging Harvest {describe(entry)} to Jira failed: {e} "
                f"(status {e.status_code}) {e.body or ''}".rstrip()
            )
            state.failed += 1
            continue

        logger.info(f"Successfully logged {entry.rounded_hours:.2f}h to {jira_key}")
        yield record


# ============================================================================
# Driver
# ============================================================================


def build_pipeline(
    harvest: HarvestClient, config: Config, state: SyncState, date_from: date, date_to: date
) -> AsyncIterator[SyncRecord]:
    records = fetch_time_entries(harvest, config, date_from, date_to)
    records = enrich_with_project_config(records)
    records = keep(has_project_config, records, state)
    records = enrich_with_user_tz(records, state)
    records = enrich_with_jira_issue(records, state)
    records = keep(has_jira_issue, records, state)
    records = enrich_with_work_logs(records, state)
    records = keep(has_work_logs, records, state)
    records = keep(lambda record: can_log_to_jira(record, state.marker), records, state)
    return log_to_jira(records, state)


async def run_pipeline(
    harvest: HarvestClient, config: Config, state: SyncState, date_from: date, date_to: date
) -> float:
    """Drive the pipeline to completion; returns the total hours logged."""
    async for record in build_pipeline(harvest, config, state, date_from, date_to):
        state.logged += 1
        state.total_hours += record.time_entry.rounded_hours

    logger.info(f"Logged {state.total_hours:.2f} hour(s) in total")
    return state.total_hours
