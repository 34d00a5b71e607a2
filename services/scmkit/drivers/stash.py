"""Bitbucket Server (formerly Stash) driver.

Self-hosted only, so server_url is required. Lists use start/limit offsets
with an isLastPage flag, except the build-status endpoint which is treated as
a bare list (see list_statuses). The API has no "my permission on this
repository" endpoint, so find_perms runs the probe cascade from
scmkit.permissions.
"""

import dataclasses
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from scmkit import pagination
from scmkit.config import ClientConfig, DriverKind
from scmkit.errors import NotFoundError, UnsupportedError
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
from scmkit.permissions import Probe, add_collaborator, resolve
from scmkit.states import PermissionMapping, StateMapping
from scmkit.transport import Transport, with_page

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 25

# Filtered repository listings are not paged by the cascade; one large page
WRITE_LISTING_SIZE = 1000

STATES = StateMapping(
    inbound={
        "SUCCESSFUL": State.SUCCESS,
        "FAILED": State.FAILURE,
        "INPROGRESS": State.PENDING,
        "CANCELLED": State.CANCELED,
    },
    outbound={
        State.UNKNOWN: "UNKNOWN",
        State.PENDING: "INPROGRESS",
        State.RUNNING: "INPROGRESS",
        State.SUCCESS: "SUCCESSFUL",
        State.FAILURE: "FAILED",
        State.ERROR: "UNKNOWN",
        State.CANCELED: "CANCELLED",
    },
)

PERMISSIONS = PermissionMapping(
    inbound={
        "REPO_READ": Permission.READ,
        "REPO_WRITE": Permission.WRITE,
        "REPO_ADMIN": Permission.ADMIN,
        "PROJECT_READ": Permission.READ,
        "PROJECT_WRITE": Permission.WRITE,
        "PROJECT_ADMIN": Permission.ADMIN,
    },
    outbound={
        Permission.READ: "REPO_READ",
        Permission.WRITE: "REPO_WRITE",
        Permission.ADMIN: "REPO_ADMIN",
    },
)

PULL_REQUEST_EVENTS = (
    "pr:declined",
    "pr:modified",
    "pr:deleted",
    "pr:opened",
    "pr:merged",
    "pr:from_ref_updated",
)
PULL_REQUEST_COMMENT_EVENTS = ("pr:comment:added", "pr:comment:deleted", "pr:comment:edited")


def error_message(body: Any) -> str:
    """Bitbucket Server errors: {"errors": [{"message": ...}]}."""
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors and isinstance(errors[0], dict):
            return errors[0].get("message", "")
    return ""


def _q(value: str) -> str:
    return url_quote(value, safe="")


def _repo_path(repo: str) -> str:
    namespace, name = split_repo(repo)
    return f"rest/api/1.0/projects/{_q(namespace)}/repos/{_q(name)}"


# --- Conversions ---


def _href(links: dict, rel: str, name: str | None = None) -> str:
    for link in links.get(rel) or []:
        if name is None or link.get("name") == name:
            return link.get("href", "")
    return ""


def _convert_repository(data: dict) -> Repository:
    links = data.get("links") or {}
    return Repository(
        id=str(data.get("id", "")),
        namespace=(data.get("project") or {}).get("key", ""),
        name=data.get("slug", ""),
        private=not data.get("public", False),
        archived=bool(data.get("archived", False)),
        clone=_href(links, "clone", "http"),
        clone_ssh=_href(links, "clone", "ssh"),
        link=_href(links, "self"),
    )


def _convert_ref(data: dict) -> Reference:
    return Reference(
        path=data.get("id", ""),
        sha=data.get("latestCommit") or data.get("latestChangeset", ""),
        name=data.get("displayId", ""),
    )


def _convert_signature(user: dict | None, timestamp: Any) -> Signature:
    user = user or {}
    return Signature(
        name=user.get("displayName") or user.get("name", ""),
        email=user.get("emailAddress", ""),
        date=parse_time(timestamp),
        login=user.get("slug") or user.get("name", ""),
    )


def _convert_change(data: dict) -> Change:
    change_type = data.get("type", "")
    return Change(
        path=(data.get("path") or {}).get("toString", ""),
        previous_path=(data.get("srcPath") or {}).get("toString", ""),
        added=change_type == "ADD",
        renamed=change_type == "MOVE",
        deleted=change_type == "DELETE",
        sha=data.get("contentId", ""),
    )


def _convert_hook(data: dict) -> Hook:
    return Hook(
        id=str(data.get("id", "")),
        name=data.get("name", ""),
        target=data.get("url", ""),
        events=tuple(data.get("events") or ()),
        active=bool(data.get("active", False)),
    )


def _convert_status(data: dict) -> Status:
    return Status(
        state=STATES.to_canonical(data.get("state")),
        label=data.get("key", ""),
        desc=data.get("description", ""),
        target=data.get("url", ""),
    )


def convert_hook_events(events: HookEvents, native: tuple[str, ...] = ()) -> list[str]:
    """Translate canonical hook events to Bitbucket Server event keys."""
    keys: list[str] = []
    if events.branch or events.push or events.tag:
        keys.append("repo:refs_changed")
    if events.pull_request:
        keys.extend(PULL_REQUEST_EVENTS)
    if events.pull_request_comment:
        keys.extend(PULL_REQUEST_COMMENT_EVENTS)
    keys.extend(native)
    return list(dict.fromkeys(keys))


# Bitbucket Server reports no roll-up state; the most severe listed state wins
STATE_PRECEDENCE = (State.FAILURE, State.PENDING, State.CANCELED, State.SUCCESS)


def combined_state(statuses: Iterable[Status]) -> State:
    present = {s.state for s in statuses}
    return next((state for state in STATE_PRECEDENCE if state in present), State.UNKNOWN)


class StashDriver:
    """Driver for Bitbucket Server REST API 1.0."""

    kind = DriverKind.STASH

    def __init__(
        self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config
        self._client = Transport(
            config,
            error_message=error_message,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def _list(
        self, path: str, opts: ListOptions, params: dict[str, Any] | None = None
    ) -> tuple[list[dict], Response]:
        """GET a paged collection and normalize its isLastPage signal."""
        query = {**(params or {}), **pagination.offset_params(opts, DEFAULT_PAGE_SIZE)}
        body, res = await self._client.request("GET", path, params=query)
        body = body if isinstance(body, dict) else {}
        values = body.get("values") or []
        page = pagination.from_last_page_flag(opts, len(values), body.get("isLastPage"))
        return values, with_page(res, page)

    # --- References and commits ---

    async def find_commit(self, repo: str, ref: str) -> tuple[Commit, Response]:
        body, res = await self._client.request("GET", f"{_repo_path(repo)}/commits/{_q(ref)}")
        namespace, name = split_repo(repo)
        sha = body.get("id", "")
        return (
            Commit(
                sha=sha,
                message=body.get("message", ""),
                author=_convert_signature(body.get("author"), body.get("authorTimestamp")),
                committer=_convert_signature(
                    body.get("committer"), body.get("committerTimestamp")
                ),
                link=f"{self.config.base_url()}/projects/{namespace}/repos/{name}/commits/{sha}",
            ),
            res,
        )

    async def _find_ref(self, repo: str, kind: str, name: str) -> tuple[Reference, Response]:
        values, res = await self._list(
            f"{_repo_path(repo)}/{kind}", ListOptions(), {"filterText": name}
        )
        for value in values:
            if value.get("displayId") == name:
                return _convert_ref(value), res
        raise NotFoundError(f"{kind[:-1]} {name} does not exist", 404)

    async def find_branch(self, repo: str, name: str) -> tuple[Reference, Response]:
        return await self._find_ref(repo, "branches", name)

    async def find_tag(self, repo: str, name: str) -> tuple[Reference, Response]:
        return await self._find_ref(repo, "tags", name)

    async def list_branches(
        self, repo: str, opts: ListOptions
    ) -> tuple[list[Reference], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/branches", opts)
        return [_convert_ref(v) for v in values], res

    async def list_tags(self, repo: str, opts: ListOptions) -> tuple[list[Reference], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/tags", opts)
        return [_convert_ref(v) for v in values], res

    async def list_commits(
        self, repo: str, opts: CommitListOptions
    ) -> tuple[list[Commit], Response]:
        raise UnsupportedError()

    async def list_changes(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/commits/{_q(ref)}/changes", opts)
        return [_convert_change(v) for v in values], res

    async def compare_commits(
        self, repo: str, source: str, target: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        values, res = await self._list(
            f"{_repo_path(repo)}/compare/changes", opts, {"from": source, "to": target}
        )
        return [_convert_change(v) for v in values], res

    async def create_ref(self, repo: str, name: str, sha: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_repo_path(repo)}/branches",
            json={"name": name, "startPoint": sha, "message": ""},
        )
        return _convert_ref(body), res

    async def delete_ref(self, repo: str, name: str) -> Response:
        namespace, repo_name = split_repo(repo)
        ref = name if name.startswith("refs/") else f"refs/heads/{name}"
        _, res = await self._client.request(
            "DELETE",
            f"rest/branch-utils/latest/projects/{_q(namespace)}/repos/{_q(repo_name)}/branches",
            json={"name": ref, "dryRun": False},
        )
        return res

    async def get_default_branch(self, repo: str) -> tuple[Reference, Response]:
        body, res = await self._client.request("GET", f"{_repo_path(repo)}/branches/default")
        return _convert_ref(body), res

    # --- Repositories ---

    async def find_repository(self, repo: str) -> tuple[Repository, Response]:
        body, res = await self._client.request("GET", _repo_path(repo))
        result = _convert_repository(body)
        try:
            branch, _ = await self.get_default_branch(repo)
        except NotFoundError:
            # Empty repositories have no default branch yet
            return result, res
        return dataclasses.replace(result, branch=branch.name), res

    async def find_perms(self, repo: str) -> tuple[Perm, Response]:
        namespace, name = split_repo(repo)
        responses: list[Response] = []

        async def fetch_repository() -> bool:
            _, res = await self._client.request("GET", _repo_path(repo))
            responses.append(res)
            return True

        async def list_webhooks() -> bool:
            _, res = await self._client.request("GET", f"{_repo_path(repo)}/webhooks")
            responses.append(res)
            return True

        async def list_user_permissions() -> bool:
            _, res = await self._client.request(
                "GET", f"{_repo_path(repo)}/permissions/users", params={"limit": 1}
            )
            responses.append(res)
            return True

        async def find_in_write_listing() -> bool:
            body, res = await self._client.request(
                "GET",
                "rest/api/1.0/repos",
                params={
                    "size": WRITE_LISTING_SIZE,
                    "permission": "REPO_WRITE",
                    "project": namespace,
                    "name": name,
                },
            )
            responses.append(res)
            values = (body or {}).get("values") or []
            return any(_convert_repository(v).full_name == f"{namespace}/{name}" for v in values)

        probes = [
            Probe("repository", fetch_repository, Permission.READ, terminal_on_denied=True),
        ]
        if self.config.hook_probe_implies_admin:
            probes.append(Probe("webhooks", list_webhooks, Permission.ADMIN))
        else:
            probes.append(Probe("webhooks", list_webhooks, Permission.WRITE))
            probes.append(Probe("repository-permissions", list_user_permissions, Permission.ADMIN))
        probes.append(Probe("write-listing", find_in_write_listing, Permission.WRITE))

        perm = await resolve(probes, repo=repo)
        logger.debug("Permissions resolved", repo=repo, level=perm.level.name)
        return perm, responses[-1] if responses else Response(status=0)

    async def find_user_permission(self, repo: str, user: str) -> tuple[Permission, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/permissions/users", params={"filter": user}
        )
        for value in (body or {}).get("values") or []:
            principal = value.get("user") or {}
            if user.lower() in (principal.get("name", "").lower(), principal.get("slug", "")):
                return PERMISSIONS.to_canonical(value.get("permission")), res
        return Permission.NONE, res

    async def add_collaborator(
        self, repo: str, user: str, permission: Permission
    ) -> tuple[bool, bool, Response]:
        async def grant() -> Response:
            _, res = await self._client.request(
                "PUT",
                f"{_repo_path(repo)}/permissions/users",
                params={"name": user, "permission": PERMISSIONS.from_canonical(permission)},
            )
            return res

        return await add_collaborator(
            lambda: self.find_user_permission(repo, user), grant, permission
        )

    async def list_repositories(
        self, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        values, res = await self._list("rest/api/1.0/repos", opts, {"permission": "REPO_READ"})
        return [_convert_repository(v) for v in values], res

    async def list_organisation_repositories(
        self, namespace: str, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        values, res = await self._list(
            f"rest/api/1.0/projects/{_q(namespace)}/repos", opts, {"permission": "REPO_READ"}
        )
        return [_convert_repository(v) for v in values], res

    async def create_repository(self, data: RepositoryInput) -> tuple[Repository, Response]:
        body, res = await self._client.request(
            "POST",
            f"rest/api/1.0/projects/{_q(data.namespace)}/repos",
            json={"name": data.name, "scmId": "git", "public": not data.private},
        )
        return _convert_repository(body), res

    async def fork_repository(
        self, data: RepositoryInput, origin: str
    ) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {"project": {"key": data.namespace}}
        if data.name:
            payload["name"] = data.name
        body, res = await self._client.request("POST", _repo_path(origin), json=payload)
        return _convert_repository(body), res

    # --- Hooks ---

    async def find_hook(self, repo: str, hook_id: str) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/webhooks/{_q(hook_id)}"
        )
        return _convert_hook(body), res

    async def list_hooks(self, repo: str, opts: ListOptions) -> tuple[list[Hook], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/webhooks", opts)
        return [_convert_hook(v) for v in values], res

    def _hook_payload(self, data: HookInput) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": data.name,
            "url": data.target,
            "events": convert_hook_events(data.events, data.native_events),
            "active": True,
        }
        if data.secret:
            payload["configuration"] = {"secret": data.secret}
        return payload

    async def create_hook(self, repo: str, data: HookInput) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "POST", f"{_repo_path(repo)}/webhooks", json=self._hook_payload(data)
        )
        return _convert_hook(body), res

    async def update_hook(
        self, repo: str, hook_id: str, data: HookInput
    ) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "PUT", f"{_repo_path(repo)}/webhooks/{_q(hook_id)}", json=self._hook_payload(data)
        )
        return _convert_hook(body), res

    async def delete_hook(self, repo: str, hook_id: str) -> Response:
        _, res = await self._client.request(
            "DELETE", f"{_repo_path(repo)}/webhooks/{_q(hook_id)}"
        )
        return res

    # --- Statuses ---

    async def list_statuses(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Status], Response]:
        """Build statuses are global per commit; repo is not part of the path.

        The endpoint's paging metadata is not reliable across server versions,
        so a full page triggers a one-item probe of the following offset.
        """
        path = f"rest/build-status/1.0/commits/{_q(ref)}"
        body, res = await self._client.request(
            "GET", path, params=pagination.offset_params(opts, DEFAULT_PAGE_SIZE)
        )
        values = (body or {}).get("values") or []

        has_overflow = False
        if pagination.needs_overflow_probe(opts, len(values)):
            probe, _ = await self._client.request(
                "GET", path, params={"start": opts.current * opts.size, "limit": 1}
            )
            has_overflow = bool((probe or {}).get("values"))

        page = pagination.from_overflow(opts, len(values), has_overflow)
        return [_convert_status(v) for v in values], with_page(res, page)

    async def find_combined_status(
        self, repo: str, ref: str
    ) -> tuple[CombinedStatus, Response]:
        statuses, res = await self.list_statuses(repo, ref, ListOptions())
        return (
            CombinedStatus(state=combined_state(statuses), sha=ref, statuses=tuple(statuses)),
            res,
        )

    async def create_status(
        self, repo: str, ref: str, data: StatusInput
    ) -> tuple[Status, Response]:
        native = STATES.from_canonical(data.state)
        _, res = await self._client.request(
            "POST",
            f"rest/build-status/1.0/commits/{_q(ref)}",
            json={
                "state": native,
                "key": data.label,
                "name": data.label,
                "url": data.target,
                "description": data.desc,
            },
        )
        return (
            Status(
                state=STATES.to_canonical(native),
                label=data.label,
                desc=data.desc,
                target=data.target,
            ),
            res,
        )

    # --- Contents ---

    async def find_content(self, repo: str, path: str, ref: str) -> tuple[Content, Response]:
        body, res = await self._client.request(
            "GET",
            f"{_repo_path(repo)}/raw/{url_quote(path)}",
            params={"at": ref} if ref else None,
            raw=True,
        )
        return Content(path=path, data=body), res

    async def create_content(self, repo: str, path: str, params: ContentParams) -> Response:
        message = params.message
        if params.signature.name and params.signature.email:
            message = (
                f"{params.message}\nSigned-off-by: "
                f"{params.signature.name} <{params.signature.email}>"
            )
        form = {"message": message, "branch": params.branch}
        if params.sha:
            form["sourceCommitId"] = params.sha
        _, res = await self._client.request(
            "PUT",
            f"{_repo_path(repo)}/browse/{url_quote(path)}",
            data=form,
            files={"content": (path.rsplit("/", 1)[-1], params.data)},
        )
        return res
