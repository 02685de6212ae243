"""Tests for mcp_stdio.github with a mocked httpx transport."""

import json

import httpx
import pytest

from mcp_stdio.github import (
    CreateIssueTool,
    GithubClient,
    GithubError,
    ListIssuesTool,
    ProjectTool,
    github_tools,
)
from mcp_stdio.tools import ToolRegistry


def _issue(number: int, **extra) -> dict:
    issue = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "labels": [{"name": "bug"}],
        "html_url": f"https://github.com/octocat/hello/issues/{number}",
        "node_id": f"I_{number}",
    }
    issue.update(extra)
    return issue


def _project_reply(nodes, owner_type="organization") -> dict:
    return {"data": {owner_type: {"projectV2": {"items": {"nodes": nodes}}}}}


def _item(number: int, typename="Issue", state="OPEN", title=None, body=None) -> dict:
    return {
        "id": f"PVTI_{number}",
        "content": {
            "__typename": typename,
            "number": number,
            "title": title or f"Item {number}",
            "url": f"https://github.com/acme/web/issues/{number}",
            "state": state,
            "body": body,
            "repository": {"name": "web", "owner": {"login": "acme"}},
        },
    }


class Recorder:
    """httpx handler that records requests and replies from a callable."""

    def __init__(self, reply):
        self.reply = reply
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.reply(request)


def _client(reply, token="t0ken") -> tuple:
    recorder = Recorder(reply)
    client = GithubClient(token=token, transport=httpx.MockTransport(recorder))
    return client, recorder


class TestGithubClient:
    def test_create_issue(self):
        client, recorder = _client(lambda r: httpx.Response(201, json=_issue(12)))
        issue = client.create_issue("octocat", "hello", "Fix it", "Details", ["bug"])

        assert issue["number"] == 12
        sent = recorder.requests[0]
        assert sent.method == "POST"
        assert sent.url.path == "/repos/octocat/hello/issues"
        assert sent.headers["Authorization"] == "token t0ken"
        assert json.loads(sent.content) == {"title": "Fix it", "body": "Details", "labels": ["bug"]}

    def test_create_issue_omits_empty_fields(self):
        client, recorder = _client(lambda r: httpx.Response(201, json=_issue(1)))
        client.create_issue("octocat", "hello", "Title only")
        assert json.loads(recorder.requests[0].content) == {"title": "Title only"}

    def test_fetch_issues_paginates_until_empty(self):
        pages = {1: [_issue(1), _issue(2)], 2: [_issue(3)], 3: []}

        def reply(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=pages[page])

        client, recorder = _client(reply)
        issues = client.fetch_issues("octocat", "hello", labels=["bug", "ui"])

        assert [i["number"] for i in issues] == [1, 2, 3]
        assert len(recorder.requests) == 3
        assert recorder.requests[0].url.params["labels"] == "bug,ui"
        assert recorder.requests[0].url.params["state"] == "open"

    def test_fetch_issues_stops_after_max_pages(self):
        client, recorder = _client(lambda r: httpx.Response(200, json=[_issue(1)]))
        issues = client.fetch_issues("octocat", "hello")
        assert len(recorder.requests) == 10
        assert len(issues) == 10

    def test_fetch_issues_limit(self):
        client, recorder = _client(lambda r: httpx.Response(200, json=[_issue(1), _issue(2), _issue(3)]))
        issues = client.fetch_issues("octocat", "hello", limit=2)
        assert len(issues) == 2
        assert len(recorder.requests) == 1

    @pytest.mark.parametrize("status,fragment", [
        (401, "Authentication failed"),
        (404, "Repository not found: octocat/hello"),
        (500, "HTTP 500"),
    ])
    def test_http_errors(self, status, fragment):
        client, _ = _client(lambda r: httpx.Response(status, text="nope"))
        with pytest.raises(GithubError) as exc:
            client.create_issue("octocat", "hello", "T")
        assert fragment in exc.value.message
        assert exc.value.status_code == status

    def test_rate_limit(self):
        headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"}
        client, _ = _client(lambda r: httpx.Response(403, headers=headers))
        with pytest.raises(GithubError, match="Remaining: 0, Reset at: 1700000000"):
            client.fetch_issues("octocat", "hello")

    def test_transport_error(self):
        def reply(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _client(reply)
        with pytest.raises(GithubError, match="connection refused"):
            client.create_issue("octocat", "hello", "T")

    def test_fetch_project_items(self):
        client, recorder = _client(lambda r: httpx.Response(200, json=_project_reply([_item(1)])))
        items = client.fetch_project_items("acme", 3)

        assert [i["content"]["number"] for i in items] == [1]
        sent = recorder.requests[0]
        assert sent.method == "POST"
        assert sent.url.path == "/graphql"
        payload = json.loads(sent.content)
        assert payload["variables"] == {"login": "acme", "number": 3}
        assert "organization(login: $login)" in payload["query"]
        assert "items(first: 100)" in payload["query"]

    def test_fetch_project_items_falls_back_to_user(self):
        def reply(request):
            if "organization(" in json.loads(request.content)["query"]:
                return httpx.Response(200, json={"errors": [{
                    "type": "NOT_FOUND",
                    "message": "Could not resolve to an Organization with the login of 'octocat'.",
                }]})
            return httpx.Response(200, json=_project_reply([_item(4)], owner_type="user"))

        client, recorder = _client(reply)
        items = client.fetch_project_items("octocat", 1)

        assert [i["content"]["number"] for i in items] == [4]
        assert len(recorder.requests) == 2
        assert "user(login: $login)" in json.loads(recorder.requests[1].content)["query"]

    def test_fetch_project_items_graphql_error(self):
        errors = {"errors": [{"type": "FORBIDDEN", "message": "Resource not accessible"}]}
        client, recorder = _client(lambda r: httpx.Response(200, json=errors))
        with pytest.raises(GithubError, match="GraphQL error: .*Resource not accessible"):
            client.fetch_project_items("acme", 1)
        assert len(recorder.requests) == 1

    def test_fetch_project_items_missing_project(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"data": {"organization": {"projectV2": None}}}))
        with pytest.raises(GithubError, match="Project not found: acme/9"):
            client.fetch_project_items("acme", 9)

    def test_no_token_no_auth_header(self):
        client, recorder = _client(lambda r: httpx.Response(200, json=[]), token=None)
        client.fetch_issues("octocat", "hello")
        assert "Authorization" not in recorder.requests[0].headers


class TestCreateIssueTool:
    def test_schema(self):
        schema = CreateIssueTool(GithubClient(None), "o", "r").get_definition().to_dict()
        assert schema["inputSchema"]["required"] == ["title"]
        assert schema["inputSchema"]["properties"]["labels"]["items"] == {"type": "string"}

    def test_success(self):
        client, _ = _client(lambda r: httpx.Response(201, json=_issue(42, title="Fix it")))
        result = CreateIssueTool(client, "octocat", "hello").execute({"title": "Fix it"})
        payload = result.to_dict()
        assert result.is_error is False
        assert "#42" in payload["content"][0]["text"]
        assert payload["structuredContent"]["number"] == 42

    def test_empty_title(self):
        client, recorder = _client(lambda r: httpx.Response(201, json=_issue(1)))
        result = CreateIssueTool(client, "octocat", "hello").execute({"title": "  "})
        assert result.is_error is True
        assert recorder.requests == []

    def test_bad_labels(self):
        client, _ = _client(lambda r: httpx.Response(201, json=_issue(1)))
        result = CreateIssueTool(client, "octocat", "hello").execute({"title": "T", "labels": "bug"})
        assert result.is_error is True

    def test_not_configured(self):
        client, recorder = _client(lambda r: httpx.Response(201, json=_issue(1)))
        result = CreateIssueTool(client, None, "hello").execute({"title": "T"})
        assert result.is_error is True
        assert "GITHUB_OWNER" in result.message
        assert recorder.requests == []

    def test_api_error_becomes_failure(self):
        client, _ = _client(lambda r: httpx.Response(404))
        result = CreateIssueTool(client, "octocat", "hello").execute({"title": "T"})
        assert result.is_error is True
        assert result.code == 404
        assert "Failed to create issue" in result.message


class TestListIssuesTool:
    def test_filters_pull_requests(self):
        issues = [_issue(1), _issue(2, pull_request={"url": "x"})]
        pages = {1: issues, 2: []}
        client, _ = _client(lambda r: httpx.Response(200, json=pages[int(r.url.params["page"])]))
        result = ListIssuesTool(client, "octocat", "hello").execute({})
        rows = result.to_dict()["structuredContent"]["issues"]
        assert [row["number"] for row in rows] == [1]
        assert rows[0]["labels"] == ["bug"]

    @pytest.mark.parametrize("arguments", [
        {"state": "merged"},
        {"limit": 0},
        {"limit": True},
        {"labels": [1, 2]},
    ])
    def test_invalid_arguments(self, arguments):
        client, recorder = _client(lambda r: httpx.Response(200, json=[]))
        result = ListIssuesTool(client, "octocat", "hello").execute(arguments)
        assert result.is_error is True
        assert recorder.requests == []


def _project_tool(nodes, repo="3") -> tuple:
    client, recorder = _client(lambda r: httpx.Response(200, json=_project_reply(nodes)))
    return ProjectTool(client, "acme", repo), recorder


class TestProjectTool:
    def test_schema(self):
        schema = ProjectTool(GithubClient(None), "o", "1").get_definition().to_dict()
        assert schema["inputSchema"]["required"] == []
        assert sorted(schema["inputSchema"]["properties"]) == ["limit", "search", "state"]

    def test_keeps_only_issues(self):
        tool, _ = _project_tool([_item(1), _item(2, typename="PullRequest"), {"id": "draft", "content": None}])
        payload = tool.execute({}).to_dict()
        structured = payload["structuredContent"]
        assert structured["totalItems"] == 3
        assert [row["number"] for row in structured["issues"]] == [1]
        assert structured["issues"][0]["repository"] == "acme/web"
        assert "#1 [OPEN] Item 1" in payload["content"][0]["text"]

    def test_state_filter_is_case_insensitive(self):
        tool, _ = _project_tool([_item(1), _item(2, state="CLOSED"), _item(3, state="CLOSED")])
        rows = tool.execute({"state": "closed"}).to_dict()["structuredContent"]["issues"]
        assert [row["number"] for row in rows] == [2, 3]

    def test_state_all(self):
        tool, _ = _project_tool([_item(1), _item(2, state="CLOSED")])
        rows = tool.execute({"state": "ALL"}).to_dict()["structuredContent"]["issues"]
        assert len(rows) == 2

    def test_search_matches_title_or_body(self):
        tool, _ = _project_tool([
            _item(1, title="Login page broken"),
            _item(2, body="The LOGIN button is misaligned"),
            _item(3, title="Checkout"),
        ])
        payload = tool.execute({"search": "login"}).to_dict()
        assert [row["number"] for row in payload["structuredContent"]["issues"]] == [1, 2]
        assert "search='login'" in payload["content"][0]["text"]

    def test_limit_applies_after_filters(self):
        tool, _ = _project_tool([_item(1, state="CLOSED"), _item(2), _item(3), _item(4)])
        rows = tool.execute({"state": "OPEN", "limit": 2}).to_dict()["structuredContent"]["issues"]
        assert [row["number"] for row in rows] == [2, 3]

    def test_empty_project(self):
        tool, _ = _project_tool([])
        payload = tool.execute({}).to_dict()
        assert "No issues found" in payload["content"][0]["text"]

    def test_project_number_must_be_numeric(self):
        tool, recorder = _project_tool([], repo="web")
        result = tool.execute({})
        assert result.is_error is True
        assert result.message == "GITHUB_REPO must be a number (project number), got: web"
        assert recorder.requests == []

    def test_not_configured(self):
        tool, recorder = _project_tool([], repo=None)
        result = tool.execute({})
        assert result.is_error is True
        assert "GitHub project not configured" in result.message
        assert recorder.requests == []

    @pytest.mark.parametrize("arguments", [
        {"state": "merged"},
        {"state": 1},
        {"limit": 0},
        {"limit": "5"},
        {"search": ["a"]},
    ])
    def test_invalid_arguments(self, arguments):
        tool, recorder = _project_tool([])
        assert tool.execute(arguments).is_error is True
        assert recorder.requests == []

    def test_api_error_becomes_failure(self):
        client, _ = _client(lambda r: httpx.Response(401))
        result = ProjectTool(client, "acme", "3").execute({})
        assert result.is_error is True
        assert result.code == 401
        assert result.message.startswith("Failed to fetch project items: Authentication failed")


class TestRegistration:
    def test_github_tools_register(self):
        registry = ToolRegistry().register_all(github_tools(GithubClient(None), "o", "r"))
        assert [t.name for t in registry.list_tools()] == ["create-github-issue", "github-project", "list-github-issues"]

    def test_invoke_without_title_is_tool_failure(self):
        registry = ToolRegistry().register_all(github_tools(GithubClient(None), "o", "r"))
        result = registry.invoke("create-github-issue", {"body": "no title"})
        assert result.is_error is True
        assert "title" in result.message
