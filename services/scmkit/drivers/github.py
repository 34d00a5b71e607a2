"""GitHub driver.

Works against github.com and GitHub Enterprise (server_url pointing at the
API root, e.g. https://ghe.example.com/api/v3). Authenticates with the
configured token; lists are paged with page/per_page and the Link header.
The repository payload carries the caller's permissions, so find_perms is a
single request.
"""

import base64
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from scmkit import pagination
from scmkit.config import ClientConfig, DriverKind
from scmkit.errors import NotFoundError
from scmkit.logging_config import get_logger
from scmkit.models import (
    Change,
    CombinedStatus,
    Commit,
    CommitListOptions,
    Content,
    ContentParams,
    Hook,
    HookEvents,
    HookInput,
    ListOptions,
    Perm,
    Permission,
    Reference,
    Repository,
    RepositoryInput,
    Response,
    Signature,
    State,
    Status,
    StatusInput,
    parse_time,
    split_repo,
)
from scmkit.permissions import add_collaborator
from scmkit.states import PermissionMapping, StateMapping
from scmkit.transport import Transport, with_page

logger = get_logger(__name__)

API_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}

STATES = StateMapping(
    inbound={
        "pending": State.PENDING,
        "success": State.SUCCESS,
        "failure": State.FAILURE,
        "error": State.ERROR,
    },
    outbound={
        State.UNKNOWN: "error",
        State.PENDING: "pending",
        State.RUNNING: "pending",
        State.SUCCESS: "success",
        State.FAILURE: "failure",
        State.ERROR: "error",
        State.CANCELED: "error",
    },
)

# Collaborator permission endpoint vocabulary (read side) and the grant
# vocabulary of PUT /collaborators (write side)
PERMISSIONS = PermissionMapping(
    inbound={
        "read": Permission.READ,
        "triage": Permission.READ,
        "write": Permission.WRITE,
        "maintain": Permission.WRITE,
        "admin": Permission.ADMIN,
    },
    outbound={
        Permission.READ: "pull",
        Permission.WRITE: "push",
        Permission.ADMIN: "admin",
    },
)


def _repo_path(repo: str) -> str:
    owner, name = split_repo(repo)
    return f"repos/{url_quote(owner, safe='')}/{url_quote(name, safe='')}"


# --- Conversions ---


def _convert_repository(data: dict) -> Repository:
    permissions = data.get("permissions")
    perm = None
    if isinstance(permissions, dict):
        perm = Perm.from_flags(
            pull=bool(permissions.get("pull")),
            push=bool(permissions.get("push")),
            admin=bool(permissions.get("admin")),
        )
    return Repository(
        id=str(data.get("id", "")),
        namespace=(data.get("owner") or {}).get("login", ""),
        name=data.get("name", ""),
        branch=data.get("default_branch", ""),
        private=bool(data.get("private", False)),
        archived=bool(data.get("archived", False)),
        clone=data.get("clone_url", ""),
        clone_ssh=data.get("ssh_url", ""),
        link=data.get("html_url", ""),
        created=parse_time(data.get("created_at")),
        updated=parse_time(data.get("updated_at")),
        perm=perm,
    )


def _convert_signature(git_user: dict | None, account: dict | None) -> Signature:
    git_user = git_user or {}
    account = account or {}
    return Signature(
        name=git_user.get("name", ""),
        email=git_user.get("email", ""),
        date=parse_time(git_user.get("date")),
        login=account.get("login", ""),
        avatar=account.get("avatar_url", ""),
    )


def _convert_commit(data: dict) -> Commit:
    commit = data.get("commit") or {}
    return Commit(
        sha=data.get("sha", ""),
        message=commit.get("message", ""),
        author=_convert_signature(commit.get("author"), data.get("author")),
        committer=_convert_signature(commit.get("committer"), data.get("committer")),
        link=data.get("html_url", ""),
    )


def _convert_branch(data: dict) -> Reference:
    name = data.get("name", "")
    return Reference(
        path=f"refs/heads/{name}", sha=(data.get("commit") or {}).get("sha", ""), name=name
    )


def _convert_tag(data: dict) -> Reference:
    name = data.get("name", "")
    return Reference(
        path=f"refs/tags/{name}", sha=(data.get("commit") or {}).get("sha", ""), name=name
    )


def _convert_git_ref(data: dict) -> Reference:
    path = data.get("ref", "")
    return Reference(
        path=path,
        sha=(data.get("object") or {}).get("sha", ""),
        name=path.removeprefix("refs/heads/").removeprefix("refs/tags/"),
    )


def _convert_change(data: dict) -> Change:
    status = data.get("status", "")
    return Change(
        path=data.get("filename", ""),
        previous_path=data.get("previous_filename", ""),
        added=status == "added",
        renamed=status == "renamed",
        deleted=status == "removed",
        sha=data.get("sha", ""),
    )


def _convert_hook(data: dict) -> Hook:
    config = data.get("config") or {}
    return Hook(
        id=str(data.get("id", "")),
        name=data.get("name", ""),
        target=config.get("url", ""),
        events=tuple(data.get("events") or ()),
        active=bool(data.get("active", False)),
        skip_verify=str(config.get("insecure_ssl", "0")) == "1",
    )


def _convert_status(data: dict) -> Status:
    return Status(
        state=STATES.to_canonical(data.get("state")),
        label=data.get("context", ""),
        desc=data.get("description") or "",
        target=data.get("target_url") or "",
    )


def convert_hook_events(events: HookEvents, native: tuple[str, ...] = ()) -> list[str]:
    """Translate canonical hook events to GitHub event names."""
    keys: list[str] = []
    if events.push:
        keys.append("push")
    if events.branch or events.tag:
        keys.extend(("create", "delete"))
    if events.pull_request:
        keys.append("pull_request")
    if events.pull_request_comment or events.issue_comment:
        keys.append("issue_comment")
    if events.review_comment:
        keys.append("pull_request_review_comment")
    if events.issue:
        keys.append("issues")
    keys.extend(native)
    return list(dict.fromkeys(keys))


class GitHubDriver:
    """Driver for the GitHub REST API."""

    kind = DriverKind.GITHUB

    def __init__(
        self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config
        self._client = Transport(config, headers=API_HEADERS, transport=transport)

    async def _list(
        self, path: str, opts: ListOptions, params: dict[str, Any] | None = None
    ) -> tuple[Any, Response]:
        """GET a paged resource and normalize its Link header.

        Returns the raw body: most endpoints page a bare list, a few (commit
        and compare) page an embedded "files" array.
        """
        query = {**(params or {}), **pagination.list_params(opts)}
        body, res = await self._client.request("GET", path, params=query)
        items = body if isinstance(body, list) else (body or {}).get("files") or []
        page = pagination.from_link_header(opts, len(items), res.headers)
        return body, with_page(res, page)

    # --- References and commits ---

    async def find_commit(self, repo: str, ref: str) -> tuple[Commit, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/commits/{url_quote(ref, safe='')}"
        )
        return _convert_commit(body), res

    async def find_branch(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/branches/{url_quote(name, safe='')}"
        )
        return _convert_branch(body), res

    async def find_tag(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/git/ref/tags/{url_quote(name, safe='')}"
        )
        return _convert_git_ref(body), res

    async def list_branches(
        self, repo: str, opts: ListOptions
    ) -> tuple[list[Reference], Response]:
        body, res = await self._list(f"{_repo_path(repo)}/branches", opts)
        return [_convert_branch(b) for b in body or []], res

    async def list_tags(self, repo: str, opts: ListOptions) -> tuple[list[Reference], Response]:
        body, res = await self._list(f"{_repo_path(repo)}/tags", opts)
        return [_convert_tag(t) for t in body or []], res

    async def list_commits(
        self, repo: str, opts: CommitListOptions
    ) -> tuple[list[Commit], Response]:
        params = {"sha": opts.ref or None, "path": opts.path or None}
        body, res = await self._list(f"{_repo_path(repo)}/commits", opts.list_options(), params)
        return [_convert_commit(c) for c in body or []], res

    async def list_changes(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        body, res = await self._list(
            f"{_repo_path(repo)}/commits/{url_quote(ref, safe='')}", opts
        )
        return [_convert_change(f) for f in (body or {}).get("files") or []], res

    async def compare_commits(
        self, repo: str, source: str, target: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        basehead = f"{url_quote(source, safe='')}...{url_quote(target, safe='')}"
        body, res = await self._list(f"{_repo_path(repo)}/compare/{basehead}", opts)
        return [_convert_change(f) for f in (body or {}).get("files") or []], res

    async def create_ref(self, repo: str, name: str, sha: str) -> tuple[Reference, Response]:
        ref = name if name.startswith("refs/") else f"refs/heads/{name}"
        body, res = await self._client.request(
            "POST", f"{_repo_path(repo)}/git/refs", json={"ref": ref, "sha": sha}
        )
        return _convert_git_ref(body), res

    async def delete_ref(self, repo: str, name: str) -> Response:
        ref = name.removeprefix("refs/") if name.startswith("refs/") else f"heads/{name}"
        _, res = await self._client.request("DELETE", f"{_repo_path(repo)}/git/refs/{ref}")
        return res

    async def get_default_branch(self, repo: str) -> tuple[Reference, Response]:
        found, _ = await self.find_repository(repo)
        return await self.find_branch(repo, found.branch)

    # --- Repositories ---

    async def find_repository(self, repo: str) -> tuple[Repository, Response]:
        body, res = await self._client.request("GET", _repo_path(repo))
        return _convert_repository(body), res

    async def find_perms(self, repo: str) -> tuple[Perm, Response]:
        found, res = await self.find_repository(repo)
        # A visible repository is at least readable
        level = max(found.perm.level if found.perm else Permission.NONE, Permission.READ)
        perm = Perm.from_level(level)
        logger.debug("Permissions resolved", repo=repo, level=perm.level.name)
        return perm, res

    async def find_user_permission(self, repo: str, user: str) -> tuple[Permission, Response]:
        body, res = await self._client.request(
            "GET",
            f"{_repo_path(repo)}/collaborators/{url_quote(user, safe='')}/permission",
        )
        return PERMISSIONS.to_canonical((body or {}).get("permission")), res

    async def add_collaborator(
        self, repo: str, user: str, permission: Permission
    ) -> tuple[bool, bool, Response]:
        async def grant() -> Response:
            _, res = await self._client.request(
                "PUT",
                f"{_repo_path(repo)}/collaborators/{url_quote(user, safe='')}",
                json={"permission": PERMISSIONS.from_canonical(permission)},
            )
            return res

        return await add_collaborator(
            lambda: self.find_user_permission(repo, user), grant, permission
        )

    async def list_repositories(
        self, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        body, res = await self._list("user/repos", opts)
        return [_convert_repository(r) for r in body or []], res

    async def list_organisation_repositories(
        self, namespace: str, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        body, res = await self._list(f"orgs/{url_quote(namespace, safe='')}/repos", opts)
        return [_convert_repository(r) for r in body or []], res

    async def create_repository(self, data: RepositoryInput) -> tuple[Repository, Response]:
        path = "user/repos"
        if data.namespace:
            path = f"orgs/{url_quote(data.namespace, safe='')}/repos"
        body, res = await self._client.request(
            "POST",
            path,
            json={
                "name": data.name,
                "description": data.description,
                "homepage": data.homepage,
                "private": data.private,
            },
        )
        return _convert_repository(body), res

    async def fork_repository(
        self, data: RepositoryInput, origin: str
    ) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {}
        if data.namespace:
            payload["organization"] = data.namespace
        if data.name:
            payload["name"] = data.name
        body, res = await self._client.request(
            "POST", f"{_repo_path(origin)}/forks", json=payload
        )
        return _convert_repository(body), res

    # --- Hooks ---

    async def find_hook(self, repo: str, hook_id: str) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/hooks/{url_quote(hook_id, safe='')}"
        )
        return _convert_hook(body), res

    async def list_hooks(self, repo: str, opts: ListOptions) -> tuple[list[Hook], Response]:
        body, res = await self._list(f"{_repo_path(repo)}/hooks", opts)
        return [_convert_hook(h) for h in body or []], res

    def _hook_payload(self, data: HookInput) -> dict[str, Any]:
        config = {
            "url": data.target,
            "content_type": "json",
            "insecure_ssl": "1" if data.skip_verify else "0",
        }
        if data.secret:
            config["secret"] = data.secret
        return {
            "name": "web",
            "active": True,
            "events": convert_hook_events(data.events, data.native_events),
            "config": config,
        }

    async def create_hook(self, repo: str, data: HookInput) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "POST", f"{_repo_path(repo)}/hooks", json=self._hook_payload(data)
        )
        return _convert_hook(body), res

    async def update_hook(
        self, repo: str, hook_id: str, data: HookInput
    ) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "PATCH",
            f"{_repo_path(repo)}/hooks/{url_quote(hook_id, safe='')}",
            json=self._hook_payload(data),
        )
        return _convert_hook(body), res

    async def delete_hook(self, repo: str, hook_id: str) -> Response:
        _, res = await self._client.request(
            "DELETE", f"{_repo_path(repo)}/hooks/{url_quote(hook_id, safe='')}"
        )
        return res

    # --- Statuses ---

    async def list_statuses(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Status], Response]:
        body, res = await self._list(
            f"{_repo_path(repo)}/commits/{url_quote(ref, safe='')}/statuses", opts
        )
        return [_convert_status(s) for s in body or []], res

    async def find_combined_status(
        self, repo: str, ref: str
    ) -> tuple[CombinedStatus, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/commits/{url_quote(ref, safe='')}/status"
        )
        body = body or {}
        return (
            CombinedStatus(
                state=STATES.to_canonical(body.get("state")),
                sha=body.get("sha", ""),
                statuses=tuple(_convert_status(s) for s in body.get("statuses") or []),
            ),
            res,
        )

    async def create_status(
        self, repo: str, ref: str, data: StatusInput
    ) -> tuple[Status, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_repo_path(repo)}/statuses/{url_quote(ref, safe='')}",
            json={
                "state": STATES.from_canonical(data.state),
                "context": data.label,
                "description": data.desc,
                "target_url": data.target,
            },
        )
        return _convert_status(body), res

    # --- Contents ---

    async def find_content(self, repo: str, path: str, ref: str) -> tuple[Content, Response]:
        body, res = await self._client.request(
            "GET",
            f"{_repo_path(repo)}/contents/{url_quote(path)}",
            params={"ref": ref} if ref else None,
        )
        if not isinstance(body, dict) or body.get("type") != "file":
            raise NotFoundError(f"{path} is not a file", 404)
        return (
            Content(
                path=body.get("path", path),
                data=base64.b64decode(body.get("content", "")),
                sha=body.get("sha", ""),
            ),
            res,
        )

    async def create_content(self, repo: str, path: str, params: ContentParams) -> Response:
        payload: dict[str, Any] = {
            "message": params.message,
            "content": base64.b64encode(params.data).decode(),
        }
        if params.branch:
            payload["branch"] = params.branch
        if params.sha:
            payload["sha"] = params.sha
        if params.signature.name and params.signature.email:
            payload["committer"] = {
                "name": params.signature.name,
                "email": params.signature.email,
            }
        _, res = await self._client.request(
            "PUT", f"{_repo_path(repo)}/contents/{url_quote(path)}", json=payload
        )
        return res
