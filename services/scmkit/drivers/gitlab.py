"""GitLab driver.

Supports GitLab.com and self-hosted GitLab instances (server_url is the
instance root; /api/v4 is appended). Authenticates via personal, project or
group access token sent as PRIVATE-TOKEN.

Projects are addressed by their URL-encoded full path, so nested groups
("group/sub/project") work unchanged.
"""

import base64
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from scmkit import pagination
from scmkit.config import ClientConfig, DriverKind
from scmkit.errors import NotFoundError, ValidationFailedError
from scmkit.logging_config import get_logger
from scmkit.models import (
    Change,
    CombinedStatus,
    Commit,
    CommitListOptions,
    Content,
    ContentParams,
    Hook,
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
)
from scmkit.permissions import add_collaborator
from scmkit.states import PermissionMapping, StateMapping
from scmkit.transport import Transport, with_page

logger = get_logger(__name__)

API_PREFIX = "api/v4"

STATES = StateMapping(
    inbound={
        "created": State.PENDING,
        "waiting_for_resource": State.PENDING,
        "preparing": State.PENDING,
        "pending": State.PENDING,
        "scheduled": State.PENDING,
        "manual": State.PENDING,
        "running": State.RUNNING,
        "success": State.SUCCESS,
        "failed": State.FAILURE,
        "canceled": State.CANCELED,
        "skipped": State.UNKNOWN,
    },
    outbound={
        State.UNKNOWN: "skipped",
        State.PENDING: "pending",
        State.RUNNING: "running",
        State.SUCCESS: "success",
        State.FAILURE: "failed",
        State.ERROR: "failed",
        State.CANCELED: "canceled",
    },
)

# Member access levels: guest/reporter read, developer writes,
# maintainer/owner administer
PERMISSIONS = PermissionMapping(
    inbound={
        "10": Permission.READ,
        "20": Permission.READ,
        "30": Permission.WRITE,
        "40": Permission.ADMIN,
        "50": Permission.ADMIN,
    },
    outbound={
        Permission.READ: "20",
        Permission.WRITE: "30",
        Permission.ADMIN: "40",
    },
)


def _project_path(repo: str) -> str:
    """URL-encode the project path for GitLab API."""
    return f"{API_PREFIX}/projects/{url_quote(repo.strip('/'), safe='')}"


def _access_level(value: Any) -> Permission:
    if value is None:
        return Permission.NONE
    return PERMISSIONS.to_canonical(str(value))


# --- Conversions ---


def _convert_repository(data: dict) -> Repository:
    permissions = data.get("permissions")
    perm = None
    if isinstance(permissions, dict):
        levels = [
            _access_level((permissions.get(key) or {}).get("access_level"))
            for key in ("project_access", "group_access")
        ]
        # A visible project is at least readable
        perm = Perm.from_level(max([*levels, Permission.READ]))
    return Repository(
        id=str(data.get("id", "")),
        namespace=(data.get("namespace") or {}).get("full_path", ""),
        name=data.get("path", ""),
        branch=data.get("default_branch") or "",
        private=data.get("visibility", "private") != "public",
        archived=bool(data.get("archived", False)),
        clone=data.get("http_url_to_repo", ""),
        clone_ssh=data.get("ssh_url_to_repo", ""),
        link=data.get("web_url", ""),
        created=parse_time(data.get("created_at")),
        updated=parse_time(data.get("last_activity_at")),
        perm=perm,
    )


def _convert_commit(data: dict) -> Commit:
    return Commit(
        sha=data.get("id", ""),
        message=data.get("message", ""),
        author=Signature(
            name=data.get("author_name", ""),
            email=data.get("author_email", ""),
            date=parse_time(data.get("authored_date")),
        ),
        committer=Signature(
            name=data.get("committer_name", ""),
            email=data.get("committer_email", ""),
            date=parse_time(data.get("committed_date")),
        ),
        link=data.get("web_url", ""),
    )


def _convert_ref(data: dict, prefix: str) -> Reference:
    name = data.get("name", "")
    return Reference(
        path=f"{prefix}{name}", sha=(data.get("commit") or {}).get("id", ""), name=name
    )


def _convert_change(data: dict) -> Change:
    return Change(
        path=data.get("new_path", ""),
        previous_path=data.get("old_path", "") if data.get("renamed_file") else "",
        added=bool(data.get("new_file")),
        renamed=bool(data.get("renamed_file")),
        deleted=bool(data.get("deleted_file")),
    )


def _convert_hook(data: dict) -> Hook:
    events = []
    if data.get("push_events"):
        events.append("push")
    if data.get("tag_push_events"):
        events.append("tag")
    if data.get("merge_requests_events"):
        events.append("merge_requests")
    if data.get("note_events"):
        events.append("comment")
    if data.get("issues_events"):
        events.append("issues")
    return Hook(
        id=str(data.get("id", "")),
        target=data.get("url", ""),
        events=tuple(events),
        active=True,
        skip_verify=not data.get("enable_ssl_verification", True),
    )


def _convert_status(data: dict) -> Status:
    return Status(
        state=STATES.to_canonical(data.get("status")),
        label=data.get("name", ""),
        desc=data.get("description") or "",
        target=data.get("target_url") or "",
    )


class GitLabDriver:
    """Driver for the GitLab REST API v4."""

    kind = DriverKind.GITLAB

    def __init__(
        self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config
        self._client = Transport(config, transport=transport, token_header="PRIVATE-TOKEN")

    async def _list(
        self, path: str, opts: ListOptions, params: dict[str, Any] | None = None
    ) -> tuple[list[Any], Response]:
        query = {**(params or {}), **pagination.list_params(opts)}
        body, res = await self._client.request("GET", path, params=query)
        items = body if isinstance(body, list) else []
        page = pagination.from_link_header(opts, len(items), res.headers)
        return items, with_page(res, page)

    # --- References and commits ---

    async def find_commit(self, repo: str, ref: str) -> tuple[Commit, Response]:
        body, res = await self._client.request(
            "GET", f"{_project_path(repo)}/repository/commits/{url_quote(ref, safe='')}"
        )
        return _convert_commit(body), res

    async def find_branch(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_project_path(repo)}/repository/branches/{url_quote(name, safe='')}"
        )
        return _convert_ref(body, "refs/heads/"), res

    async def find_tag(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_project_path(repo)}/repository/tags/{url_quote(name, safe='')}"
        )
        return _convert_ref(body, "refs/tags/"), res

    async def list_branches(
        self, repo: str, opts: ListOptions
    ) -> tuple[list[Reference], Response]:
        items, res = await self._list(f"{_project_path(repo)}/repository/branches", opts)
        return [_convert_ref(b, "refs/heads/") for b in items], res

    async def list_tags(self, repo: str, opts: ListOptions) -> tuple[list[Reference], Response]:
        items, res = await self._list(f"{_project_path(repo)}/repository/tags", opts)
        return [_convert_ref(t, "refs/tags/") for t in items], res

    async def list_commits(
        self, repo: str, opts: CommitListOptions
    ) -> tuple[list[Commit], Response]:
        params = {"ref_name": opts.ref or None, "path": opts.path or None}
        items, res = await self._list(
            f"{_project_path(repo)}/repository/commits", opts.list_options(), params
        )
        return [_convert_commit(c) for c in items], res

    async def list_changes(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        items, res = await self._list(
            f"{_project_path(repo)}/repository/commits/{url_quote(ref, safe='')}/diff", opts
        )
        return [_convert_change(d) for d in items], res

    async def compare_commits(
        self, repo: str, source: str, target: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        # The compare endpoint returns every diff in one response
        body, res = await self._client.request(
            "GET",
            f"{_project_path(repo)}/repository/compare",
            params={"from": source, "to": target},
        )
        diffs = (body or {}).get("diffs") or []
        return [_convert_change(d) for d in diffs], with_page(
            res, pagination.from_cursor(opts, len(diffs), has_more=False)
        )

    async def create_ref(self, repo: str, name: str, sha: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_project_path(repo)}/repository/branches",
            params={"branch": name.removeprefix("refs/heads/"), "ref": sha},
        )
        return _convert_ref(body, "refs/heads/"), res

    async def delete_ref(self, repo: str, name: str) -> Response:
        branch = url_quote(name.removeprefix("refs/heads/"), safe="")
        _, res = await self._client.request(
            "DELETE", f"{_project_path(repo)}/repository/branches/{branch}"
        )
        return res

    async def get_default_branch(self, repo: str) -> tuple[Reference, Response]:
        found, _ = await self.find_repository(repo)
        return await self.find_branch(repo, found.branch)

    # --- Repositories ---

    async def find_repository(self, repo: str) -> tuple[Repository, Response]:
        body, res = await self._client.request("GET", _project_path(repo))
        return _convert_repository(body), res

    async def find_perms(self, repo: str) -> tuple[Perm, Response]:
        found, res = await self.find_repository(repo)
        perm = found.perm or Perm.from_level(Permission.READ)
        logger.debug("Permissions resolved", repo=repo, level=perm.level.name)
        return perm, res

    async def _find_user_id(self, user: str) -> int:
        body, _ = await self._client.request(
            "GET", f"{API_PREFIX}/users", params={"username": user}
        )
        if not body:
            raise NotFoundError(f"user {user} not found", 404)
        return body[0]["id"]

    async def find_user_permission(self, repo: str, user: str) -> tuple[Permission, Response]:
        user_id = await self._find_user_id(user)
        try:
            body, res = await self._client.request(
                "GET", f"{_project_path(repo)}/members/all/{user_id}"
            )
        except NotFoundError as exc:
            # Not a member, directly or through a group
            return Permission.NONE, Response(status=exc.status)
        return _access_level((body or {}).get("access_level")), res

    async def add_collaborator(
        self, repo: str, user: str, permission: Permission
    ) -> tuple[bool, bool, Response]:
        access_level = int(PERMISSIONS.from_canonical(permission))

        async def grant() -> Response:
            user_id = await self._find_user_id(user)
            try:
                _, res = await self._client.request(
                    "POST",
                    f"{_project_path(repo)}/members",
                    json={"user_id": user_id, "access_level": access_level},
                )
            except ValidationFailedError as exc:
                if exc.status != 409:
                    raise
                # Already a direct member with a lower level
                _, res = await self._client.request(
                    "PUT",
                    f"{_project_path(repo)}/members/{user_id}",
                    json={"access_level": access_level},
                )
            return res

        return await add_collaborator(
            lambda: self.find_user_permission(repo, user), grant, permission
        )

    async def list_repositories(
        self, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        items, res = await self._list(f"{API_PREFIX}/projects", opts, {"membership": "true"})
        return [_convert_repository(r) for r in items], res

    async def list_organisation_repositories(
        self, namespace: str, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        items, res = await self._list(
            f"{API_PREFIX}/groups/{url_quote(namespace, safe='')}/projects", opts
        )
        return [_convert_repository(r) for r in items], res

    async def _namespace_id(self, namespace: str) -> int:
        body, _ = await self._client.request(
            "GET", f"{API_PREFIX}/namespaces/{url_quote(namespace, safe='')}"
        )
        return body["id"]

    async def create_repository(self, data: RepositoryInput) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {
            "name": data.name,
            "path": data.name,
            "description": data.description,
            "visibility": "private" if data.private else "public",
        }
        if data.namespace:
            payload["namespace_id"] = await self._namespace_id(data.namespace)
        body, res = await self._client.request("POST", f"{API_PREFIX}/projects", json=payload)
        return _convert_repository(body), res

    async def fork_repository(
        self, data: RepositoryInput, origin: str
    ) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {}
        if data.namespace:
            payload["namespace_path"] = data.namespace
        if data.name:
            payload["name"] = data.name
            payload["path"] = data.name
        body, res = await self._client.request(
            "POST", f"{_project_path(origin)}/fork", json=payload
        )
        return _convert_repository(body), res

    # --- Hooks ---

    async def find_hook(self, repo: str, hook_id: str) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "GET", f"{_project_path(repo)}/hooks/{url_quote(hook_id, safe='')}"
        )
        return _convert_hook(body), res

    async def list_hooks(self, repo: str, opts: ListOptions) -> tuple[list[Hook], Response]:
        items, res = await self._list(f"{_project_path(repo)}/hooks", opts)
        return [_convert_hook(h) for h in items], res

    def _hook_payload(self, data: HookInput) -> dict[str, Any]:
        events = data.events
        payload: dict[str, Any] = {
            "url": data.target,
            "push_events": events.push or events.branch,
            "tag_push_events": events.tag,
            "merge_requests_events": events.pull_request,
            "note_events": (
                events.pull_request_comment or events.issue_comment or events.review_comment
            ),
            "issues_events": events.issue,
            "enable_ssl_verification": not data.skip_verify,
        }
        # Native GitLab flags, e.g. "pipeline_events"
        for name in data.native_events:
            payload[name] = True
        if data.secret:
            payload["token"] = data.secret
        return payload

    async def create_hook(self, repo: str, data: HookInput) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "POST", f"{_project_path(repo)}/hooks", json=self._hook_payload(data)
        )
        return _convert_hook(body), res

    async def update_hook(
        self, repo: str, hook_id: str, data: HookInput
    ) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "PUT",
            f"{_project_path(repo)}/hooks/{url_quote(hook_id, safe='')}",
            json=self._hook_payload(data),
        )
        return _convert_hook(body), res

    async def delete_hook(self, repo: str, hook_id: str) -> Response:
        _, res = await self._client.request(
            "DELETE", f"{_project_path(repo)}/hooks/{url_quote(hook_id, safe='')}"
        )
        return res

    # --- Statuses ---

    async def list_statuses(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Status], Response]:
        items, res = await self._list(
            f"{_project_path(repo)}/repository/commits/{url_quote(ref, safe='')}/statuses",
            opts,
        )
        return [_convert_status(s) for s in items], res

    async def find_combined_status(
        self, repo: str, ref: str
    ) -> tuple[CombinedStatus, Response]:
        """Roll-up from the commit's pipeline status plus its first page of statuses."""
        commit, _ = await self._client.request(
            "GET", f"{_project_path(repo)}/repository/commits/{url_quote(ref, safe='')}"
        )
        statuses, res = await self.list_statuses(repo, ref, ListOptions(size=100))
        commit = commit or {}
        return (
            CombinedStatus(
                state=STATES.to_canonical(commit.get("status")),
                sha=commit.get("id", ""),
                statuses=tuple(statuses),
            ),
            res,
        )

    async def create_status(
        self, repo: str, ref: str, data: StatusInput
    ) -> tuple[Status, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_project_path(repo)}/statuses/{url_quote(ref, safe='')}",
            json={
                "state": STATES.from_canonical(data.state),
                "name": data.label,
                "description": data.desc,
                "target_url": data.target,
            },
        )
        return _convert_status(body), res

    # --- Contents ---

    async def find_content(self, repo: str, path: str, ref: str) -> tuple[Content, Response]:
        body, res = await self._client.request(
            "GET",
            f"{_project_path(repo)}/repository/files/{url_quote(path, safe='')}",
            params={"ref": ref or "HEAD"},
        )
        body = body or {}
        return (
            Content(
                path=body.get("file_path", path),
                data=base64.b64decode(body.get("content", "")),
                sha=body.get("blob_id", ""),
            ),
            res,
        )

    async def create_content(self, repo: str, path: str, params: ContentParams) -> Response:
        """Create a file, or update it when params.sha names the existing blob."""
        payload: dict[str, Any] = {
            "branch": params.branch,
            "commit_message": params.message,
            "content": base64.b64encode(params.data).decode(),
            "encoding": "base64",
        }
        if params.signature.name:
            payload["author_name"] = params.signature.name
        if params.signature.email:
            payload["author_email"] = params.signature.email
        _, res = await self._client.request(
            "PUT" if params.sha else "POST",
            f"{_project_path(repo)}/repository/files/{url_quote(path, safe='')}",
            json=payload,
        )
        return res
