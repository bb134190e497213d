"""
Canned GitHub payloads and a fake HTTP session.

The session returns real requests.Response objects so the client's header
and JSON handling run exactly as they would against GitHub.
"""

import json
from typing import Optional

import requests

BASE_URL = "https://api.github.com"


def make_response(status: int = 200, body=None, headers: Optional[dict] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body if body is not None else {}).encode()
    response.encoding = "utf-8"
    response.headers.update(headers or {})
    return response


class FakeSession:
    """Routes GET requests by (path, page) to canned responses."""

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.routes = {}
        self.calls = []

    def add(self, path, body=None, status=200, headers=None, page=None):
        self.routes[(path, page)] = (status, body, headers or {})

    def fail(self, path, exc):
        self.routes[(path, None)] = exc

    def get(self, url, headers=None, params=None, timeout=None):
        path = url[len(self.base_url):]
        params = params or {}
        self.calls.append((path, dict(params)))

        route = self.routes.get((path, params.get("page"))) or self.routes.get((path, None))
        if route is None:
            return make_response(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        status, body, route_headers = route
        return make_response(status, body, route_headers)

    def paths(self):
        return [path for path, _ in self.calls]


def user_payload(login="octocat", user_id=1):
    return {"id": user_id, "login": login, "avatar_url": f"https://avatars.example/{login}"}


def repo_payload(full_name="octocat/hello", repo_id=100):
    owner, name = full_name.split("/")
    return {
        "id": repo_id,
        "name": name,
        "full_name": full_name,
        "private": False,
        "description": f"{name} repository",
        "html_url": f"https://github.com/{full_name}",
        "clone_url": f"https://github.com/{full_name}.git",
        "default_branch": "main",
        "language": "Python",
        "owner": user_payload(owner, repo_id + 1000),
    }


def commit_payload(sha, date="2024-01-15T10:00:00Z", message="Fix bug", stats=None, full_name="octocat/hello"):
    payload = {
        "sha": sha,
        "commit": {
            "message": message,
            "author": {"name": "Octo Cat", "email": "octo@example.com", "date": date},
            "committer": {"name": "Octo Cat", "email": "octo@example.com", "date": date},
        },
        "author": user_payload(),
        "committer": user_payload(),
        "html_url": f"https://github.com/{full_name}/commit/{sha}",
    }
    if stats is not None:
        payload["stats"] = {"additions": stats[0], "deletions": stats[1], "total": sum(stats)}
    return payload


def pr_payload(
    pr_id,
    number=1,
    created_at="2024-01-15T09:00:00Z",
    updated_at=None,
    login="octocat",
    state="open",
    merged_at=None,
    additions=None,
    deletions=None,
    full_name="octocat/hello",
):
    payload = {
        "id": pr_id,
        "number": number,
        "title": f"PR {number}",
        "body": None,
        "state": state,
        "draft": False,
        "html_url": f"https://github.com/{full_name}/pull/{number}",
        "created_at": created_at,
        "updated_at": updated_at or created_at,
        "closed_at": merged_at,
        "merged_at": merged_at,
        "user": user_payload(login),
        "assignees": [],
    }
    if additions is not None:
        payload["additions"] = additions
        payload["deletions"] = deletions or 0
    return payload


def issue_payload(
    issue_id,
    number=1,
    created_at="2024-01-15T11:00:00Z",
    updated_at=None,
    login="octocat",
    state="open",
    assignees=(),
    is_pull_request=False,
    full_name="octocat/hello",
):
    payload = {
        "id": issue_id,
        "number": number,
        "title": f"Issue {number}",
        "body": None,
        "state": state,
        "html_url": f"https://github.com/{full_name}/issues/{number}",
        "created_at": created_at,
        "updated_at": updated_at or created_at,
        "closed_at": None,
        "user": user_payload(login),
        "assignees": [user_payload(a, 50 + i) for i, a in enumerate(assignees)],
        "comments": 0,
    }
    if is_pull_request:
        payload["pull_request"] = {"url": f"https://api.github.com/repos/{full_name}/pulls/{number}"}
    return payload


def add_repository(session, full_name, repo_id=100, commits=(), prs=(), issues=()):
    """Register every endpoint the aggregator calls for one repository."""
    base = f"/repos/{full_name}"
    session.add(base, repo_payload(full_name, repo_id))
    session.add(f"{base}/commits", list(commits))
    session.add(f"{base}/pulls", list(prs))
    session.add(f"{base}/issues", list(issues))
