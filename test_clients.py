"""Tests for the Harvest and Jira clients."""

from datetime import date
from unittest.mock import MagicMock, call, patch

import pytest
import requests

from clients import ApiError, HarvestClient, JiraClient, _handle_api_error
from models import Config


def response(data=None, status=200, reason="OK", text=""):
    r = MagicMock()
    r.status_code = status
    r.ok = status < 400
    r.reason = reason
    r.text = text
    r.json.return_value = data
    return r


@pytest.fixture
def session():
    with patch("requests.Session") as mock_session:
        instance = MagicMock()
        instance.headers = {}
        mock_session.return_value = instance
        yield instance


@pytest.fixture
def config():
    return Config.from_dict(
        {"user": {"harvestAccessToken": "tok", "harvestAccountId": 42}, "projects": []}
    )


class TestHandleApiError:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, "Jira: Authentication failed. Check your API token!"),
            (404, "Jira: Resource not found."),
            (418, "Jira: HTTP 418 - I'm a teapot"),
        ],
    )
    def test_messages(self, status, expected):
        assert _handle_api_error(response(status=status, reason="I'm a teapot"), "Jira") == expected


class TestHarvestClient:
    def test_headers(self, session, config):
        HarvestClient(config)
        assert session.headers["Authorization"] == "Bearer tok"
        assert session.headers["Harvest-Account-ID"] == "42"

    def test_requires_credentials(self, session):
        with pytest.raises(ValueError):
            HarvestClient(Config.from_dict({"user": {}}))

    def test_page_request(self, session, config):
        session.request.return_value = response({"time_entries": [], "next_page": None})

        data = HarvestClient(config).get_time_entries_page(3, date(2024, 1, 7), date(2024, 1, 13))

        assert data == {"time_entries": [], "next_page": None}
        session.request.assert_called_once_with(
            "GET",
            "https://api.harvestapp.com/v2/time_entries",
            timeout=30,
            params={"page": 3, "per_page": 100, "from": "2024-01-07", "to": "2024-01-13"},
        )

    def test_http_error(self, session, config):
        session.request.return_value = response(status=401, text="unauthorized")
        with pytest.raises(ApiError) as exc:
            HarvestClient(config).get_time_entries_page(1, date(2024, 1, 7), date(2024, 1, 13))
        assert exc.value.status_code == 401
        assert exc.value.body == "unauthorized"
        assert "Authentication failed" in str(exc.value)

    def test_connection_error(self, session, config):
        session.request.side_effect = requests.exceptions.ConnectionError()
        with pytest.raises(ApiError, match="Cannot connect"):
            HarvestClient(config).get_time_entries_page(1, date(2024, 1, 7), date(2024, 1, 13))

    def test_timeout(self, session, config):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ApiError, match="timed out"):
            HarvestClient(config).get_time_entries_page(1, date(2024, 1, 7), date(2024, 1, 13))

    def test_other_request_errors(self, session, config):
        session.request.side_effect = requests.exceptions.TooManyRedirects("Exceeded 30 redirects.")
        with pytest.raises(ApiError, match="Exceeded 30 redirects"):
            HarvestClient(config).get_time_entries_page(1, date(2024, 1, 7), date(2024, 1, 13))

    def test_malformed_json(self, session, config):
        r = response(text="<html>")
        r.json.side_effect = ValueError("Expecting value")
        session.request.return_value = r
        with pytest.raises(ApiError, match="Malformed JSON"):
            HarvestClient(config).get_time_entries_page(1, date(2024, 1, 7), date(2024, 1, 13))


class TestJiraClient:
    def test_basic_auth(self, session):
        JiraClient("https://acme.atlassian.net/", "me@acme.com", "secret")
        assert session.auth == ("me@acme.com", "secret")

    def test_base_url_strips_trailing_slash(self, session):
        client = JiraClient("https://acme.atlassian.net/", "me@acme.com", "secret")
        assert client.base_url == "https://acme.atlassian.net"

    def test_get_issue(self, session):
        session.request.return_value = response({"key": "FOO-1"})
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")

        assert client.get_issue("FOO-1") == {"key": "FOO-1"}
        session.request.assert_called_once_with(
            "GET", "https://acme.atlassian.net/rest/api/3/issue/FOO-1", timeout=10, params={}
        )

    def test_get_all_worklogs_follows_start_at(self, session):
        session.request.side_effect = [
            response({"startAt": 0, "maxResults": 2, "total": 3, "worklogs": [{"id": "1"}, {"id": "2"}]}),
            response({"startAt": 2, "maxResults": 2, "total": 3, "worklogs": [{"id": "3"}]}),
        ]
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")

        worklogs = client.get_all_worklogs("FOO-1")

        assert [w["id"] for w in worklogs] == ["1", "2", "3"]
        url = "https://acme.atlassian.net/rest/api/3/issue/FOO-1/worklog"
        assert session.request.call_args_list == [
            call("GET", url, timeout=10, params={"startAt": 0}),
            call("GET", url, timeout=10, params={"startAt": 2}),
        ]

    def test_get_all_worklogs_stops_on_empty_page(self, session):
        session.request.return_value = response({"startAt": 0, "total": 5, "worklogs": []})
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")

        assert client.get_all_worklogs("FOO-1") == []
        assert session.request.call_count == 1

    def test_find_assignable_users(self, session):
        session.request.return_value = response([{"timeZone": "Europe/Berlin"}])
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")

        assert client.find_assignable_users("FOO", "me@acme.com") == [{"timeZone": "Europe/Berlin"}]
        session.request.assert_called_once_with(
            "GET",
            "https://acme.atlassian.net/rest/api/3/user/assignable/multiProjectSearch",
            timeout=10,
            params={"projectKeys": "FOO", "query": "me@acme.com"},
        )

    def test_add_worklog(self, session):
        session.request.return_value = response({"id": "100"}, status=201)
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")

        assert client.add_worklog("FOO-1", {"timeSpentSeconds": 60}) == {"id": "100"}
        session.request.assert_called_once_with(
            "POST",
            "https://acme.atlassian.net/rest/api/3/issue/FOO-1/worklog",
            timeout=10,
            json={"timeSpentSeconds": 60},
        )

    def test_for_project(self, session):
        config = Config.from_dict(
            {
                "user": {},
                "projects": [
                    {
                        "harvestId": 1,
                        "jiraProjectKey": "FOO",
                        "atlassianDomain": "acme",
                        "atlassianApiToken": "secret",
                        "atlassianAccountEmail": "me@acme.com",
                    }
                ],
            }
        )
        client = JiraClient.for_project(config.projects[0])
        assert client.base_url == "https://acme.atlassian.net"
        assert session.auth == ("me@acme.com", "secret")

    def test_worklog_response_must_be_an_object(self, session):
        session.request.return_value = response([{"id": "1"}])
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")
        with pytest.raises(ApiError, match="Unexpected worklog response for FOO-1"):
            client.get_all_worklogs("FOO-1")

    def test_user_search_must_be_a_list(self, session):
        session.request.return_value = response({"timeZone": "Europe/Berlin"})
        client = JiraClient("https://acme.atlassian.net", "me@acme.com", "secret")
        with pytest.raises(ApiError, match="Unexpected user search response"):
            client.find_assignable_users("FOO", "me@acme.com")
