"""Bitbucket Cloud driver (API 2.0).

Lists are paged with page/pagelen and the body carries a "next" URL when more
results exist. Commit listings use an opaque page token in that URL, which is
kept on Page.next_url. Permissions come straight from
/2.0/user/permissions/repositories, so no probe cascade is needed.
"""

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
from scmkit.permissions import add_collaborator
from scmkit.states import PermissionMapping, StateMapping
from scmkit.transport import Transport, with_page

logger = get_logger(__name__)

STATES = StateMapping(
    inbound={
        "SUCCESSFUL": State.SUCCESS,
        "FAILED": State.FAILURE,
        "INPROGRESS": State.PENDING,
        "STOPPED": State.CANCELED,
    },
    outbound={
        State.UNKNOWN: "INPROGRESS",
        State.PENDING: "INPROGRESS",
        State.RUNNING: "INPROGRESS",
        State.SUCCESS: "SUCCESSFUL",
        State.FAILURE: "FAILED",
        State.ERROR: "FAILED",
        State.CANCELED: "STOPPED",
    },
)

PERMISSIONS = PermissionMapping(
    inbound={"read": Permission.READ, "write": Permission.WRITE, "admin": Permission.ADMIN},
    outbound={Permission.READ: "read", Permission.WRITE: "write", Permission.ADMIN: "admin"},
)


def error_message(body: Any) -> str:
    """Bitbucket Cloud errors: {"type": "error", "error": {"message": ...}}."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message", "")
    return ""


def _repo_path(repo: str) -> str:
    namespace, name = split_repo(repo)
    return f"2.0/repositories/{url_quote(namespace, safe='')}/{url_quote(name, safe='')}"


def _ref_name(name: str) -> str:
    # Tag names such as "@scope/pkg@1.0.0" are addressed verbatim
    return url_quote(name, safe="/@")


# --- Conversions ---


def _href(links: dict, rel: str) -> str:
    link = links.get(rel)
    if isinstance(link, dict):
        return link.get("href", "")
    return ""


def _clone_href(links: dict, name: str) -> str:
    for link in links.get("clone") or []:
        if link.get("name") == name:
            return link.get("href", "")
    return ""


def _convert_repository(data: dict) -> Repository:
    links = data.get("links") or {}
    namespace, name = split_repo(data.get("full_name", ""))
    return Repository(
        id=data.get("uuid", ""),
        namespace=namespace,
        name=name,
        branch=(data.get("mainbranch") or {}).get("name", ""),
        private=bool(data.get("is_private", False)),
        clone=_clone_href(links, "https"),
        clone_ssh=_clone_href(links, "ssh"),
        link=_href(links, "html"),
        created=parse_time(data.get("created_on")),
        updated=parse_time(data.get("updated_on")),
    )


def _convert_ref(data: dict, prefix: str) -> Reference:
    name = data.get("name", "")
    return Reference(
        path=f"{prefix}{name}",
        sha=(data.get("target") or {}).get("hash", ""),
        name=name,
    )


def _parse_raw_author(raw: str) -> tuple[str, str]:
    """Split "Jane Citizen <jane@example.com>" into name and email."""
    name, _, rest = raw.partition("<")
    return name.strip(), rest.rstrip(">").strip()


def _convert_commit(data: dict) -> Commit:
    author = data.get("author") or {}
    user = author.get("user") or {}
    raw_name, raw_email = _parse_raw_author(author.get("raw", ""))
    signature = Signature(
        name=raw_name or user.get("display_name", ""),
        email=raw_email,
        date=parse_time(data.get("date")),
        login=user.get("nickname", ""),
        avatar=_href(user.get("links") or {}, "avatar"),
    )
    return Commit(
        sha=data.get("hash", ""),
        message=data.get("message", ""),
        author=signature,
        committer=signature,
        link=_href(data.get("links") or {}, "html"),
    )


def _convert_change(data: dict) -> Change:
    status = data.get("status", "")
    old = data.get("old") or {}
    new = data.get("new") or {}
    return Change(
        path=new.get("path") or old.get("path", ""),
        previous_path=old.get("path", "") if status == "renamed" else "",
        added=status == "added",
        renamed=status == "renamed",
        deleted=status == "removed",
    )


def _convert_hook(data: dict) -> Hook:
    return Hook(
        id=data.get("uuid", ""),
        name=data.get("description", ""),
        target=data.get("url", ""),
        events=tuple(data.get("events") or ()),
        active=bool(data.get("active", False)),
        skip_verify=bool(data.get("skip_cert_verification", False)),
    )


def _convert_status(data: dict) -> Status:
    return Status(
        state=STATES.to_canonical(data.get("state")),
        label=data.get("key", ""),
        desc=data.get("description", ""),
        target=data.get("url", ""),
    )


def convert_hook_events(events: HookEvents, native: tuple[str, ...] = ()) -> list[str]:
    """Translate canonical hook events to Bitbucket Cloud event keys."""
    keys: list[str] = []
    if events.push or events.branch or events.tag:
        keys.append("repo:push")
    if events.pull_request:
        keys.extend(
            (
                "pullrequest:created",
                "pullrequest:updated",
                "pullrequest:fulfilled",
                "pullrequest:rejected",
            )
        )
    if events.pull_request_comment:
        keys.extend(
            (
                "pullrequest:comment_created",
                "pullrequest:comment_updated",
                "pullrequest:comment_deleted",
            )
        )
    if events.issue:
        keys.extend(("issue:created", "issue:updated"))
    if events.issue_comment:
        keys.append("issue:comment_created")
    keys.extend(native)
    return list(dict.fromkeys(keys))


class BitbucketDriver:
    """Driver for bitbucket.org."""

    kind = DriverKind.BITBUCKET

    def __init__(
        self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config
        self._client = Transport(config, error_message=error_message, transport=transport)

    async def _list(
        self, path: str, opts: ListOptions, params: dict[str, Any] | None = None
    ) -> tuple[list[dict], Response]:
        """GET a paged collection and normalize its next/previous cursor."""
        query = {**(params or {}), **pagination.list_params(opts, "page", "pagelen")}
        body, res = await self._client.request("GET", path, params=query)
        body = body if isinstance(body, dict) else {}
        values = body.get("values") or []
        next_url = body.get("next") or ""
        page = pagination.from_cursor(
            opts,
            len(values),
            has_more=bool(next_url),
            next_page=pagination.page_number(next_url),
            prev_page=pagination.page_number(body.get("previous") or ""),
            next_url=next_url,
        )
        return values, with_page(res, page)

    # --- References and commits ---

    async def find_commit(self, repo: str, ref: str) -> tuple[Commit, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/commit/{_ref_name(ref)}"
        )
        return _convert_commit(body), res

    async def find_branch(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/refs/branches/{_ref_name(name)}"
        )
        return _convert_ref(body, "refs/heads/"), res

    async def find_tag(self, repo: str, name: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/refs/tags/{_ref_name(name)}"
        )
        return _convert_ref(body, "refs/tags/"), res

    async def list_branches(
        self, repo: str, opts: ListOptions
    ) -> tuple[list[Reference], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/refs/branches", opts)
        return [_convert_ref(v, "refs/heads/") for v in values], res

    async def list_tags(self, repo: str, opts: ListOptions) -> tuple[list[Reference], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/refs/tags", opts)
        return [_convert_ref(v, "refs/tags/") for v in values], res

    async def list_commits(
        self, repo: str, opts: CommitListOptions
    ) -> tuple[list[Commit], Response]:
        path = f"{_repo_path(repo)}/commits"
        if opts.ref:
            path = f"{path}/{_ref_name(opts.ref)}"
        params = {"path": opts.path} if opts.path else None
        values, res = await self._list(path, opts.list_options(), params)
        return [_convert_commit(v) for v in values], res

    async def list_changes(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        values, res = await self._list(f"{_repo_path(repo)}/diffstat/{_ref_name(ref)}", opts)
        return [_convert_change(v) for v in values], res

    async def compare_commits(
        self, repo: str, source: str, target: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        revspec = f"{_ref_name(source)}..{_ref_name(target)}"
        values, res = await self._list(f"{_repo_path(repo)}/diffstat/{revspec}", opts)
        return [_convert_change(v) for v in values], res

    async def create_ref(self, repo: str, name: str, sha: str) -> tuple[Reference, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_repo_path(repo)}/refs/branches",
            json={"name": name, "target": {"hash": sha}},
        )
        return _convert_ref(body, "refs/heads/"), res

    async def delete_ref(self, repo: str, name: str) -> Response:
        name = name.removeprefix("refs/heads/")
        _, res = await self._client.request(
            "DELETE", f"{_repo_path(repo)}/refs/branches/{_ref_name(name)}"
        )
        return res

    async def get_default_branch(self, repo: str) -> tuple[Reference, Response]:
        found, _ = await self.find_repository(repo)
        if not found.branch:
            raise NotFoundError(f"{repo} has no main branch", 404)
        return await self.find_branch(repo, found.branch)

    # --- Repositories ---

    async def find_repository(self, repo: str) -> tuple[Repository, Response]:
        body, res = await self._client.request("GET", _repo_path(repo))
        return _convert_repository(body), res

    async def find_perms(self, repo: str) -> tuple[Perm, Response]:
        namespace, name = split_repo(repo)
        body, res = await self._client.request(
            "GET",
            "2.0/user/permissions/repositories",
            params={"q": f'repository.full_name="{namespace}/{name}"'},
        )
        values = (body or {}).get("values") or []
        level = max(
            (PERMISSIONS.to_canonical(v.get("permission")) for v in values),
            default=Permission.NONE,
        )
        logger.debug("Permissions resolved", repo=repo, level=level.name)
        return Perm.from_level(level), res

    async def find_user_permission(self, repo: str, user: str) -> tuple[Permission, Response]:
        """Explicit permission of `user`; a 404 means no explicit grant."""
        try:
            body, res = await self._client.request(
                "GET",
                f"{_repo_path(repo)}/permissions-config/users/{url_quote(user, safe='')}",
            )
        except NotFoundError as exc:
            return Permission.NONE, Response(status=exc.status)
        return PERMISSIONS.to_canonical((body or {}).get("permission")), res

    async def add_collaborator(
        self, repo: str, user: str, permission: Permission
    ) -> tuple[bool, bool, Response]:
        async def grant() -> Response:
            _, res = await self._client.request(
                "PUT",
                f"{_repo_path(repo)}/permissions-config/users/{url_quote(user, safe='')}",
                json={"permission": PERMISSIONS.from_canonical(permission)},
            )
            return res

        return await add_collaborator(
            lambda: self.find_user_permission(repo, user), grant, permission
        )

    async def list_repositories(
        self, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        values, res = await self._list("2.0/repositories", opts, {"role": "member"})
        return [_convert_repository(v) for v in values], res

    async def list_organisation_repositories(
        self, namespace: str, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        values, res = await self._list(f"2.0/repositories/{url_quote(namespace, safe='')}", opts)
        return [_convert_repository(v) for v in values], res

    async def create_repository(self, data: RepositoryInput) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {"scm": "git", "is_private": data.private}
        if data.description:
            payload["description"] = data.description
        if data.homepage:
            payload["website"] = data.homepage
        body, res = await self._client.request(
            "POST", _repo_path(f"{data.namespace}/{data.name}"), json=payload
        )
        return _convert_repository(body), res

    async def fork_repository(
        self, data: RepositoryInput, origin: str
    ) -> tuple[Repository, Response]:
        payload: dict[str, Any] = {"workspace": {"slug": data.namespace}}
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
        values, res = await self._list(f"{_repo_path(repo)}/hooks", opts)
        return [_convert_hook(v) for v in values], res

    def _hook_payload(self, data: HookInput) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "description": data.name,
            "url": data.target,
            "active": True,
            "events": convert_hook_events(data.events, data.native_events),
            "skip_cert_verification": data.skip_verify,
        }
        if data.secret:
            payload["secret"] = data.secret
        return payload

    async def create_hook(self, repo: str, data: HookInput) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "POST", f"{_repo_path(repo)}/hooks", json=self._hook_payload(data)
        )
        return _convert_hook(body), res

    async def update_hook(
        self, repo: str, hook_id: str, data: HookInput
    ) -> tuple[Hook, Response]:
        body, res = await self._client.request(
            "PUT",
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
        values, res = await self._list(
            f"{_repo_path(repo)}/commit/{_ref_name(ref)}/statuses", opts
        )
        return [_convert_status(v) for v in values], res

    async def find_combined_status(
        self, repo: str, ref: str
    ) -> tuple[CombinedStatus, Response]:
        # Bitbucket Cloud exposes no roll-up of commit statuses
        raise UnsupportedError()

    async def create_status(
        self, repo: str, ref: str, data: StatusInput
    ) -> tuple[Status, Response]:
        body, res = await self._client.request(
            "POST",
            f"{_repo_path(repo)}/commit/{_ref_name(ref)}/statuses/build",
            json={
                "state": STATES.from_canonical(data.state),
                "key": data.label,
                "name": data.label,
                "url": data.target,
                "description": data.desc,
            },
        )
        return _convert_status(body), res

    # --- Contents ---

    async def find_content(self, repo: str, path: str, ref: str) -> tuple[Content, Response]:
        body, res = await self._client.request(
            "GET", f"{_repo_path(repo)}/src/{_ref_name(ref)}/{url_quote(path)}", raw=True
        )
        return Content(path=path, data=body), res

    async def create_content(self, repo: str, path: str, params: ContentParams) -> Response:
        form = {"message": params.message, "branch": params.branch}
        if params.signature.name and params.signature.email:
            form["author"] = f"{params.signature.name} <{params.signature.email}>"
        if params.sha:
            form["parents"] = params.sha
        _, res = await self._client.request(
            "POST",
            f"{_repo_path(repo)}/src",
            data=form,
            files={path: (path.rsplit("/", 1)[-1], params.data)},
        )
        return res
