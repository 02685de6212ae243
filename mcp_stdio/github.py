"""
GitHub issue tools.

A small REST and GraphQL client over httpx and the ``create-github-issue``,
``list-github-issues`` and ``github-project`` tools built on it. Every client
error is turned into a ``ToolFailure`` before it leaves a tool.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .protocol import MCPServerError, ParamType, ToolParameter, ToolResult
from .tools import BaseTool


logger = logging.getLogger(__name__)

MAX_PAGES = 10
PER_PAGE = 100
PROJECT_STATES = ("OPEN", "CLOSED", "ALL")

_PROJECT_ITEMS_QUERY = """
query($login: String!, $number: Int!) {
  %s(login: $login) {
    projectV2(number: $number) {
      items(first: %d) {
        nodes {
          id
          content {
            __typename
            ... on Issue {
              number
              title
              url
              state
              body
              repository { name owner { login } }
            }
            ... on PullRequest {
              number
              title
              url
              state
              body
              repository { name owner { login } }
            }
          }
        }
      }
    }
  }
}
"""


class GithubError(MCPServerError):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GithubClient:
    """
    Client for the GitHub REST API.

    Usage::

        client = GithubClient(token="ghp_...")
        issue = client.create_issue("octocat", "hello-world", "Found a bug")
    """

    def __init__(
        self,
        token: Optional[str],
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token = token
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, not_found: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise GithubError(f"GitHub request failed: {exc}") from exc

        if response.is_success:
            return response

        code = response.status_code
        if code == 401:
            raise GithubError("Authentication failed. Please check your GITHUB_TOKEN.", code)
        if code == 403:
            remaining = response.headers.get("X-RateLimit-Remaining", "unknown")
            reset = response.headers.get("X-RateLimit-Reset", "unknown")
            raise GithubError(f"Rate limit exceeded. Remaining: {remaining}, Reset at: {reset}", code)
        if code == 404:
            raise GithubError(not_found, code)
        raise GithubError(f"GitHub API error (HTTP {code}): {response.text[:200]}", code)

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title}
        if body:
            payload["body"] = body
        if labels:
            payload["labels"] = labels
        response = self._request(
            "POST", f"/repos/{owner}/{repo}/issues", _repo_not_found(owner, repo), json=payload,
        )
        return response.json()

    def fetch_issues(
        self,
        owner: str,
        repo: str,
        state: str = "open",
        labels: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch issues page by page, stopping after ``MAX_PAGES`` pages."""
        issues: List[Dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            params: Dict[str, Any] = {"state": state, "per_page": PER_PAGE, "page": page}
            if labels:
                params["labels"] = ",".join(labels)
            response = self._request(
                "GET", f"/repos/{owner}/{repo}/issues", _repo_not_found(owner, repo), params=params,
            )
            batch = response.json()
            if not batch:
                break
            issues.extend(batch)
            if limit is not None and len(issues) >= limit:
                return issues[:limit]
        return issues

    def fetch_project_items(self, owner: str, project_number: int) -> List[Dict[str, Any]]:
        """
        Fetch the items of a Projects (v2) board through the GraphQL API.

        ``owner`` is looked up as an organization first and as a user when
        no organization has that login.
        """
        try:
            return self._fetch_project_items(owner, project_number, "organization")
        except GithubError as e:
            if "NOT_FOUND" not in e.message and "Could not resolve to an Organization" not in e.message:
                raise
            logger.info(f"{owner} is not an organization, trying as a user")
        return self._fetch_project_items(owner, project_number, "user")

    def _fetch_project_items(self, owner: str, project_number: int, owner_type: str) -> List[Dict[str, Any]]:
        query = _PROJECT_ITEMS_QUERY % (owner_type, PER_PAGE)
        payload = {"query": query, "variables": {"login": owner, "number": project_number}}
        response = self._request(
            "POST", "/graphql", f"Project not found: {owner}/{project_number}", json=payload,
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise GithubError(f"Failed to parse GraphQL response: {exc}") from exc

        if not isinstance(data, dict):
            raise GithubError("Unexpected GraphQL response")
        if data.get("errors"):
            raise GithubError(f"GraphQL error: {json.dumps(data['errors'])}")

        project = ((data.get("data") or {}).get(owner_type) or {}).get("projectV2")
        if not isinstance(project, dict):
            raise GithubError(f"Project not found: {owner}/{project_number}")
        return (project.get("items") or {}).get("nodes") or []


def _repo_not_found(owner: str, repo: str) -> str:
    return f"Repository not found: {owner}/{repo}"


class _GithubTool(BaseTool):
    def __init__(self, client: GithubClient, owner: Optional[str], repo: Optional[str]):
        self.client = client
        self.owner = owner
        self.repo = repo

    def _not_configured(self) -> Optional[ToolResult]:
        if self.client.token and self.owner and self.repo:
            return None
        return ToolResult.failure(
            "GitHub repository not configured. Please set GITHUB_TOKEN, GITHUB_OWNER, "
            "and GITHUB_REPO environment variables in your MCP configuration."
        )


class CreateIssueTool(_GithubTool):
    """Create an issue in the configured repository."""

    @property
    def name(self) -> str:
        return "create-github-issue"

    @property
    def description(self) -> str:
        return (
            "Creates a new GitHub issue in the configured repository. "
            "Requires a 'title' and accepts an optional 'body' and 'labels'."
        )

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter("title", ParamType.STRING, "Issue title"),
            ToolParameter("body", ParamType.STRING, "Issue body", required=False),
            ToolParameter(
                "labels", ParamType.ARRAY, "Labels to apply",
                required=False, items=ParamType.STRING,
            ),
        ]

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        title = arguments.get("title")
        if not isinstance(title, str) or not title.strip():
            return ToolResult.failure("Title cannot be empty")
        body = arguments.get("body")
        if body is not None and not isinstance(body, str):
            return ToolResult.failure("'body' must be a string")
        labels = arguments.get("labels")
        if labels is not None and not _is_string_list(labels):
            return ToolResult.failure("'labels' must be an array of strings")

        unconfigured = self._not_configured()
        if unconfigured is not None:
            return unconfigured

        try:
            issue = self.client.create_issue(self.owner, self.repo, title.strip(), body, labels)
        except GithubError as e:
            return ToolResult.failure(f"Failed to create issue: {e.message}", e.status_code)

        logger.info(f"Created issue #{issue.get('number')} in {self.owner}/{self.repo}")
        summary = (
            f"Issue created: #{issue.get('number')} {issue.get('title', title)}\n"
            f"Repository: {self.owner}/{self.repo}\n"
            f"URL: {issue.get('html_url', '')}"
        )
        return ToolResult.success({
            "content": [{"type": "text", "text": summary}],
            "structuredContent": {
                "number": issue.get("number"),
                "url": issue.get("html_url"),
                "id": issue.get("node_id"),
            },
        })


class ListIssuesTool(_GithubTool):
    """List issues of the configured repository."""

    @property
    def name(self) -> str:
        return "list-github-issues"

    @property
    def description(self) -> str:
        return "Lists issues of the configured GitHub repository, optionally filtered by state and labels"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                "state", ParamType.STRING, "Issue state: open, closed or all (default: open)",
                required=False,
            ),
            ToolParameter(
                "labels", ParamType.ARRAY, "Only issues carrying all of these labels",
                required=False, items=ParamType.STRING,
            ),
            ToolParameter(
                "limit", ParamType.INTEGER, "Maximum number of issues to return",
                required=False,
            ),
        ]

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        state = arguments.get("state", "open")
        if state not in ("open", "closed", "all"):
            return ToolResult.failure(f"Invalid state: {state}")
        labels = arguments.get("labels")
        if labels is not None and not _is_string_list(labels):
            return ToolResult.failure("'labels' must be an array of strings")
        limit = arguments.get("limit")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            return ToolResult.failure("'limit' must be a positive integer")

        unconfigured = self._not_configured()
        if unconfigured is not None:
            return unconfigured

        try:
            issues = self.client.fetch_issues(self.owner, self.repo, state, labels, limit)
        except GithubError as e:
            return ToolResult.failure(f"Failed to list issues: {e.message}", e.status_code)

        # Pull requests come back from the issues endpoint too
        rows = [
            {
                "number": issue.get("number"),
                "title": issue.get("title"),
                "state": issue.get("state"),
                "labels": [label.get("name") for label in issue.get("labels", [])],
                "url": issue.get("html_url"),
            }
            for issue in issues
            if "pull_request" not in issue
        ]
        text = f"{len(rows)} issue(s) in {self.owner}/{self.repo}\n" + json.dumps(rows, indent=2)
        return ToolResult.success({
            "content": [{"type": "text", "text": text}],
            "structuredContent": {"issues": rows},
        })


class ProjectTool(_GithubTool):
    """
    Read the issues of a Projects (v2) board.

    The board is addressed by the configured owner (organization or user)
    and ``GITHUB_REPO``, which holds the project number for this tool.
    """

    @property
    def name(self) -> str:
        return "github-project"

    @property
    def description(self) -> str:
        return (
            "Fetches issues from the configured GitHub project for analysis. "
            "The project is configured via GITHUB_OWNER and GITHUB_REPO environment variables."
        )

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                "state", ParamType.STRING, "Filter issues by state (OPEN, CLOSED, or ALL)",
                required=False,
            ),
            ToolParameter(
                "limit", ParamType.INTEGER, "Maximum number of issues to return",
                required=False,
            ),
            ToolParameter(
                "search", ParamType.STRING, "Search term to filter issues by title or body",
                required=False,
            ),
        ]

    def _not_configured(self) -> Optional[ToolResult]:
        if self.client.token and self.owner and self.repo:
            return None
        return ToolResult.failure(
            "GitHub project not configured. Please set GITHUB_TOKEN, GITHUB_OWNER (org), "
            "and GITHUB_REPO (project number) environment variables in your MCP configuration."
        )

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        state = arguments.get("state")
        if state is not None and (not isinstance(state, str) or state.upper() not in PROJECT_STATES):
            return ToolResult.failure(f"Invalid state: {state}")
        limit = arguments.get("limit")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            return ToolResult.failure("'limit' must be a positive integer")
        search = arguments.get("search")
        if search is not None and not isinstance(search, str):
            return ToolResult.failure("'search' must be a string")

        unconfigured = self._not_configured()
        if unconfigured is not None:
            return unconfigured
        if not self.repo.isdecimal():
            return ToolResult.failure(f"GITHUB_REPO must be a number (project number), got: {self.repo}")
        project_number = int(self.repo)

        try:
            items = self.client.fetch_project_items(self.owner, project_number)
        except GithubError as e:
            return ToolResult.failure(f"Failed to fetch project items: {e.message}", e.status_code)

        issues = [
            item["content"] for item in items
            if isinstance(item.get("content"), dict) and item["content"].get("__typename") == "Issue"
        ]
        if state is not None and state.upper() != "ALL":
            issues = [i for i in issues if str(i.get("state", "")).upper() == state.upper()]
        if search:
            term = search.lower()
            issues = [
                i for i in issues
                if term in (i.get("title") or "").lower() or term in (i.get("body") or "").lower()
            ]
        if limit is not None:
            issues = issues[:limit]

        rows = [_project_row(issue) for issue in issues]
        filters = []
        if state is not None:
            filters.append(f"state={state}")
        if limit is not None:
            filters.append(f"limit={limit}")
        if search is not None:
            filters.append(f"search='{search}'")

        lines = [
            f"Project {self.owner}/{project_number}: {len(items)} item(s), {len(rows)} issue(s)",
        ]
        if filters:
            lines.append(f"Filters applied: {', '.join(filters)}")
        if not rows:
            lines.append("No issues found in this project.")
        for row in rows:
            lines.append(f"#{row['number']} [{row['state']}] {row['title']} ({row['repository']}) {row['url']}")
        return ToolResult.success({
            "content": [{"type": "text", "text": "\n".join(lines)}],
            "structuredContent": {"totalItems": len(items), "issues": rows},
        })


def _project_row(issue: Dict[str, Any]) -> Dict[str, Any]:
    repository = issue.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    return {
        "number": issue.get("number"),
        "title": issue.get("title"),
        "state": issue.get("state"),
        "url": issue.get("url"),
        "body": issue.get("body"),
        "repository": f"{owner}/{repository.get('name')}",
    }


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def github_tools(client: GithubClient, owner: Optional[str], repo: Optional[str]) -> List[BaseTool]:
    return [
        CreateIssueTool(client, owner, repo),
        ListIssuesTool(client, owner, repo),
        ProjectTool(client, owner, repo),
    ]
