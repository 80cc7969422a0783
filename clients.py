"""API clients for Harvest and Jira."""

from datetime import date

import requests

from models import Config, ProjectConfig

HARVEST_API_BASE_URL = "https://api.harvestapp.com"
HARVEST_PAGE_SIZE = 100
USER_AGENT = "harvest-jira-sync (requests)"


class ApiError(Exception):
    """User-friendly API error."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _handle_api_error(response: requests.Response, service: str) -> str:
    """Convert HTTP errors to user-friendly messages."""
    status = response.status_code

    messages = {
        401: f"{service}: Authentication failed. Check your API token!",
        403: f"{service}: Access denied. Check your permissions or API token!",
        404: f"{service}: Resource not found.",
        429: f"{service}: Too many requests. Wait a moment and try again.",
        500: f"{service}: Server error. The service may be temporarily unavailable.",
        502: f"{service}: Bad gateway. The service may be temporarily unavailable.",
        503: f"{service}: Service unavailable. Try again later.",
    }

    return messages.get(status, f"{service}: HTTP {status} - {response.reason}")


def _request(
    session: requests.Session, method: str, url: str, service: str, timeout: int, **kwargs
):
    """Send a request and return the decoded JSON body, raising ApiError on any failure."""
    try:
        r = session.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.ConnectionError:
        raise ApiError(f"{service}: Cannot connect to {url}. Check your network!")
    except requests.exceptions.Timeout:
        raise ApiError(f"{service}: Connection timed out. The server may be slow.")
    except requests.exceptions.RequestException as e:
        raise ApiError(f"{service}: Request to {url} failed: {e}")

    if not r.ok:
        raise ApiError(_handle_api_error(r, service), r.status_code, r.text)
    try:
        return r.json()
    except ValueError:
        raise ApiError(f"{service}: Malformed JSON in response from {url}", r.status_code, r.text)


class HarvestClient:
    """Client for Harvest REST API v2."""

    def __init__(self, config: Config, base_url: str = HARVEST_API_BASE_URL):
        if not config.user.harvest_access_token or not config.user.harvest_account_id:
            raise ValueError("Harvest access token and account id are required")
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": USER_AGENT,
                "Authorization": f"Bearer {config.user.harvest_access_token}",
                "Harvest-Account-ID": str(config.user.harvest_account_id),
                "Content-Type": "application/json",
            }
        )

    def get_time_entries_page(
        self, page: int, date_from: date, date_to: date, per_page: int = HARVEST_PAGE_SIZE
    ) -> dict:
        """Fetch one page of time entries; `date_to` is inclusive."""
        return _request(
            self.session,
            "GET",
            f"{self.base_url}/v2/time_entries",
            "Harvest",
            timeout=30,
            params={
                "page": page,
                "per_page": per_page,
                "from": date_from.isoformat(),
                "to": date_to.isoformat(),
            },
        )


class JiraClient:
    """Client for Jira Cloud REST API v3, basic auth with email + API token."""

    def __init__(self, base_url: str, email: str, token: str):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.auth = (email, token)
        self.session.headers.update({"Accept": "application/json"})

    @classmethod
    def for_project(cls, project: ProjectConfig) -> "JiraClient":
        return cls(
            project.jira_base_url, project.atlassian_account_email, project.atlassian_api_token
        )

    def _get(self, path: str, **params) -> dict | list:
        return _request(self.session, "GET", f"{self.base_url}{path}", "Jira", timeout=10, params=params)

    def get_issue(self, issue_key: str) -> dict:
        """Fetch an issue, including its embedded worklog field."""
        return self._get(f"/rest/api/3/issue/{issue_key}")

    def get_worklogs(self, issue_key: str, start_at: int = 0) -> dict:
        """Fetch one page of an issue's worklogs."""
        return self._get(f"/rest/api/3/issue/{issue_key}/worklog", startAt=start_at)

    def get_all_worklogs(self, issue_key: str) -> list[dict]:
        """Fetch every worklog of an issue, following startAt pagination."""
        worklogs: list[dict] = []
        start_at = 0

        while True:
            data = self.get_worklogs(issue_key, start_at)
            page = data.get("worklogs") if isinstance(data, dict) else None
            if not isinstance(page, list):
                raise ApiError(f"Jira: Unexpected worklog response for {issue_key}")
            worklogs.extend(page)

            # Handle pagination
            start_at = data.get("startAt", start_at) + len(page)
            if not page or start_at >= data.get("total", 0):
                break

        return worklogs

    def find_assignable_users(self, project_key: str, query: str) -> list[dict]:
        """Search users assignable in a project, e.g. by account email."""
        users = self._get(
            "/rest/api/3/user/assignable/multiProjectSearch",
            projectKeys=project_key,
            query=query,
        )
        if not isinstance(users, list):
            raise ApiError(f"Jira: Unexpected user search response for {project_key}")
        return users

    def add_worklog(self, issue_key: str, payload: dict) -> dict:
        """Create a worklog on an issue."""
        return _request(
            self.session,
            "POST",
            f"{self.base_url}/rest/api/3/issue/{issue_key}/worklog",
            "Jira",
            timeout=10,
            json=payload,
        )
