"""
Unit tests for the GitHub and GitLab clients.

HTTP is mocked at the ``requests.Session`` level.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from git_event_aggregator.errors import PlatformAPIError, TransientFetchError
from git_event_aggregator.platforms.base import FetchResult, RawActivity, parse_timestamp, snake_case
from git_event_aggregator.platforms.github import (
    GitHubClient,
    canonical_github_action,
    parse_next_link,
)
from git_event_aggregator.platforms.gitlab import GitLabClient, canonical_gitlab_action


def make_response(status_code=200, payload=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = payload
    response.text = str(payload)
    return response


def github_event(event_id, created_at, event_type="PushEvent", repo_id=42, action=None):
    payload = {"action": action} if action else {}
    return {
        "id": event_id,
        "type": event_type,
        "created_at": created_at,
        "repo": {"id": repo_id, "name": "octo/pollux", "url": "https://api.github.com/repos/octo/pollux"},
        "payload": payload,
    }


# =============================================================================
# HELPERS
# =============================================================================


class TestHelpers:
    def test_parse_timestamp(self):
        assert parse_timestamp("2024-05-03T10:00:00Z") == datetime(2024, 5, 3, 10, 0)
        assert parse_timestamp("2024-05-03T12:00:00.123+02:00") == datetime(2024, 5, 3, 10, 0, 0, 123000)

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_parse_bad_timestamp(self, value):
        assert parse_timestamp(value) is None

    def test_snake_case(self):
        assert snake_case("PullRequest") == "pull_request"
        assert snake_case("pushed to") == "pushed_to"
        assert snake_case("MergeRequest") == "merge_request"

    def test_parse_next_link(self):
        header = (
            '<https://api.github.com/user/1/events?per_page=2&page=2>; rel="next", '
            '<https://api.github.com/user/1/events?per_page=2&page=6>; rel="last"'
        )
        assert parse_next_link(header) == "https://api.github.com/user/1/events?per_page=2&page=2"
        assert parse_next_link('<https://api.github.com/x?page=1>; rel="prev"') is None
        assert parse_next_link("") is None

    @pytest.mark.parametrize(
        "event_type, payload, expected",
        [
            ("PushEvent", {}, "push"),
            ("PullRequestEvent", {"action": "opened"}, "pull_request.opened"),
            ("IssueCommentEvent", {"action": "created"}, "issue_comment.created"),
            ("CreateEvent", None, "create"),
            ("", {}, None),
        ],
    )
    def test_canonical_github_action(self, event_type, payload, expected):
        assert canonical_github_action(event_type, payload) == expected

    @pytest.mark.parametrize(
        "action_name, target_type, expected",
        [
            ("pushed to", None, "push"),
            ("pushed new", None, "push"),
            ("opened", "MergeRequest", "merge_request.opened"),
            ("commented on", "Note", "note.commented_on"),
            ("joined", None, "joined"),
            ("", "Issue", None),
        ],
    )
    def test_canonical_gitlab_action(self, action_name, target_type, expected):
        assert canonical_gitlab_action(action_name, target_type) == expected


# =============================================================================
# GITHUB
# =============================================================================


class TestGitHubClient:
    @pytest.fixture
    def client(self):
        return GitHubClient(username="octo", token="secret", api_url="https://api.github.test", per_page=2, max_pages=5)

    def test_follows_pagination_and_returns_oldest_first(self, client):
        page1 = make_response(
            payload=[github_event("3", "2024-05-03T12:00:00Z"), github_event("2", "2024-05-03T11:00:00Z")],
            headers={"Link": '<https://api.github.test/users/octo/events?page=2>; rel="next"', "ETag": '"abc"'},
        )
        page2 = make_response(payload=[github_event("1", "2024-05-03T10:00:00Z", "PullRequestEvent", action="opened")])

        with patch.object(client.session, "get", side_effect=[page1, page2]) as get:
            result = client.fetch_since(None)

        assert [item.native_event_id for item in result.items] == ["1", "2", "3"]
        assert result.items[0].action == "pull_request.opened"
        assert result.items[0].project_native_id == 42
        assert result.items[0].project_url == "https://github.com/octo/pollux"
        assert not result.not_modified
        assert get.call_args_list[0].args[0] == "https://api.github.test/users/octo/events"
        assert get.call_args_list[1].args[0] == "https://api.github.test/users/octo/events?page=2"

    def test_stops_at_checkpoint_and_drops_older_items(self, client):
        page1 = make_response(
            payload=[github_event("3", "2024-05-03T12:00:00Z"), github_event("2", "2024-05-03T11:00:00Z")],
            headers={"Link": '<https://api.github.test/users/octo/events?page=2>; rel="next"'},
        )

        with patch.object(client.session, "get", side_effect=[page1]) as get:
            result = client.fetch_since(datetime(2024, 5, 3, 11, 0))

        assert get.call_count == 1
        assert [item.native_event_id for item in result.items] == ["3"]

    def test_etag_is_sent_only_after_acknowledge(self, client):
        first = make_response(payload=[github_event("1", "2024-05-03T10:00:00Z")], headers={"ETag": '"abc"'})
        retry = make_response(payload=[github_event("1", "2024-05-03T10:00:00Z")], headers={"ETag": '"abc"'})
        not_modified = make_response(status_code=304)

        with patch.object(client.session, "get", side_effect=[first, retry, not_modified]) as get:
            client.fetch_since(None)
            # The first fetch was never committed: ask again without the ETag
            client.fetch_since(None)
            client.acknowledge()
            result = client.fetch_since(None)

        assert get.call_args_list[1].kwargs["headers"] == {}
        assert get.call_args_list[2].kwargs["headers"] == {"If-None-Match": '"abc"'}
        assert result.not_modified
        assert result.items == []

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status_is_transient(self, client, status):
        with patch.object(client.session, "get", return_value=make_response(status_code=status)):
            with pytest.raises(TransientFetchError):
                client.fetch_since(None)

    def test_rate_limited_403_is_transient(self, client):
        response = make_response(
            status_code=403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1714730000"}
        )
        with patch.object(client.session, "get", return_value=response):
            with pytest.raises(TransientFetchError):
                client.fetch_since(None)

    @pytest.mark.parametrize("status", [401, 403, 404])
    def test_other_errors_are_permanent(self, client, status):
        with patch.object(client.session, "get", return_value=make_response(status_code=status)):
            with pytest.raises(PlatformAPIError):
                client.fetch_since(None)

    @pytest.mark.parametrize(
        "error",
        [
            requests.ConnectionError("refused"),
            requests.Timeout("slow"),
            requests.exceptions.ChunkedEncodingError("connection reset mid-body"),
            requests.exceptions.ContentDecodingError("bad gzip"),
        ],
    )
    def test_network_errors_are_transient(self, client, error):
        with patch.object(client.session, "get", side_effect=error):
            with pytest.raises(TransientFetchError):
                client.fetch_since(None)

    def test_invalid_json(self, client):
        response = make_response()
        response.json.side_effect = ValueError("not json")
        with patch.object(client.session, "get", return_value=response):
            with pytest.raises(PlatformAPIError):
                client.fetch_since(None)

    def test_missing_fields_are_passed_through_as_none(self, client):
        broken = {"id": "9", "type": "PushEvent", "created_at": "garbage", "repo": {}}
        with patch.object(client.session, "get", return_value=make_response(payload=[broken])):
            [item] = client.fetch_since(None).items

        assert item.project_native_id is None
        assert item.project_name is None
        assert item.occurred_at is None

    def test_token_is_sent_as_bearer(self, client):
        assert client.session.headers["Authorization"] == "Bearer secret"
        assert client.session.headers["X-GitHub-Api-Version"] == "2022-11-28"


# =============================================================================
# GITLAB
# =============================================================================


class TestGitLabClient:
    @pytest.fixture
    def client(self):
        return GitLabClient(user_id="1234", token="secret", api_url="https://gitlab.test/api/v4", per_page=2, max_pages=5)

    def test_fetches_pages_and_looks_up_projects_once(self, client):
        page1 = make_response(
            payload=[
                {"id": 11, "project_id": 7, "action_name": "pushed to", "created_at": "2024-05-03T10:00:00.000Z"},
                {"id": 12, "project_id": 7, "action_name": "opened", "target_type": "MergeRequest",
                 "created_at": "2024-05-03T11:00:00.000Z"},
            ],
            headers={"x-next-page": "2", "x-total-pages": "2"},
        )
        project = make_response(payload={"id": 7, "name_with_namespace": "Octo / Pollux", "web_url": "https://gitlab.test/octo/pollux"})
        page2 = make_response(
            payload=[{"id": 13, "project_id": 7, "action_name": "pushed new", "created_at": "2024-05-03T12:00:00.000Z"}],
            headers={"x-next-page": "", "x-total-pages": "2"},
        )

        with patch.object(client.session, "get", side_effect=[page1, project, page2]) as get:
            result = client.fetch_since(None)

        assert [item.native_event_id for item in result.items] == ["11", "12", "13"]
        assert [item.action for item in result.items] == ["push", "merge_request.opened", "push"]
        assert result.items[0].project_name == "Octo / Pollux"
        assert result.items[0].project_url == "https://gitlab.test/octo/pollux"
        assert get.call_count == 3
        assert get.call_args_list[1].args[0] == "https://gitlab.test/api/v4/projects/7"
        assert "after" not in get.call_args_list[0].kwargs["params"]

    def test_after_is_the_day_before_the_checkpoint(self, client):
        empty = make_response(payload=[], headers={})

        with patch.object(client.session, "get", return_value=empty) as get:
            client.fetch_since(datetime(2024, 5, 3, 10, 0))

        assert get.call_args.kwargs["params"]["after"] == "2024-05-02"

    def test_items_at_or_before_checkpoint_are_dropped(self, client):
        page = make_response(
            payload=[
                {"id": 1, "project_id": 7, "action_name": "pushed to", "created_at": "2024-05-03T09:00:00Z"},
                {"id": 2, "project_id": 7, "action_name": "pushed to", "created_at": "2024-05-03T10:00:00Z"},
                {"id": 3, "project_id": 7, "action_name": "pushed to", "created_at": "2024-05-03T11:00:00Z"},
            ]
        )
        project = make_response(payload={"name_with_namespace": "Octo / Pollux", "web_url": "https://gitlab.test/octo/pollux"})

        with patch.object(client.session, "get", side_effect=[page, project]):
            result = client.fetch_since(datetime(2024, 5, 3, 10, 0))

        assert [item.native_event_id for item in result.items] == ["3"]

    def test_max_pages_is_respected(self, client):
        client.max_pages = 1
        page = make_response(payload=[], headers={"x-next-page": "2", "x-total-pages": "9"})

        with patch.object(client.session, "get", return_value=page) as get:
            client.fetch_since(None)

        assert get.call_count == 1

    def test_unexpected_payload(self, client):
        with patch.object(client.session, "get", return_value=make_response(payload={"message": "oops"})):
            with pytest.raises(PlatformAPIError):
                client.fetch_since(None)

    def test_acknowledge_forgets_project_details(self, client):
        client._projects[7] = ("Old", "https://gitlab.test/old")

        client.acknowledge()

        assert client._projects == {}

    def test_unresolvable_project_does_not_fail_the_fetch(self, client):
        page = make_response(
            payload=[
                {"id": 1, "project_id": 10, "action_name": "pushed to", "created_at": "2024-05-03T10:00:00Z"},
                {"id": 2, "project_id": 99, "action_name": "pushed to", "created_at": "2024-05-03T11:00:00Z"},
                {"id": 3, "project_id": 99, "action_name": "pushed to", "created_at": "2024-05-03T12:00:00Z"},
            ]
        )
        found = make_response(payload={"name_with_namespace": "Octo / Pollux", "web_url": "https://gitlab.test/octo/pollux"})
        gone = make_response(status_code=404, payload={"message": "404 Project Not Found"})

        with patch.object(client.session, "get", side_effect=[page, found, gone]) as get:
            result = client.fetch_since(None)

        # The missing project is looked up once per cycle
        assert get.call_count == 3
        assert [(item.native_event_id, item.project_name) for item in result.items] == [
            ("1", "Octo / Pollux"),
            ("2", None),
            ("3", None),
        ]


# =============================================================================
# BASE CLIENT
# =============================================================================


class CannedClient(GitHubClient):
    def __init__(self, items):
        super().__init__(username="octo", token="secret")
        self.items = items

    def _fetch(self, since):
        return FetchResult(items=self.items)


class TestFetchSince:
    def test_aware_timestamps_are_normalized_before_comparing(self):
        plus_two = timezone(timedelta(hours=2))
        client = CannedClient(
            [
                RawActivity("1", 42, "octo/pollux", "https://github.com/octo/pollux", "push",
                            datetime(2024, 5, 3, 12, 0, tzinfo=plus_two)),
                RawActivity("2", 42, "octo/pollux", "https://github.com/octo/pollux", "push",
                            datetime(2024, 5, 3, 13, 30, tzinfo=plus_two)),
            ]
        )

        result = client.fetch_since(datetime(2024, 5, 3, 10, 0, tzinfo=timezone.utc))

        assert [item.occurred_at for item in result.items] == [datetime(2024, 5, 3, 11, 30)]
