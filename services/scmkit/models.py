"""
Canonical, provider-agnostic model shared by every driver.

All entities are frozen dataclasses built fresh per response. They carry no
reference to the request that produced them.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

# --- Enumerations ---


class State(Enum):
    """Canonical build state."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    CANCELED = "canceled"


class Permission(IntEnum):
    """Ordinal repository permission level."""

    NONE = 0
    READ = 1
    WRITE = 2
    ADMIN = 3


@dataclass(frozen=True)
class Perm:
    """Effective {pull, push, admin} rights on a repository.

    Build through from_level() so the triple stays monotonic:
    admin implies push implies pull.
    """

    pull: bool = False
    push: bool = False
    admin: bool = False

    @classmethod
    def from_level(cls, level: Permission) -> "Perm":
        return cls(
            pull=level >= Permission.READ,
            push=level >= Permission.WRITE,
            admin=level >= Permission.ADMIN,
        )

    @classmethod
    def from_flags(cls, pull: bool, push: bool, admin: bool) -> "Perm":
        """Normalize provider-reported flags; the strongest flag wins."""
        if admin:
            return cls.from_level(Permission.ADMIN)
        if push:
            return cls.from_level(Permission.WRITE)
        if pull:
            return cls.from_level(Permission.READ)
        return cls()

    @property
    def level(self) -> Permission:
        if self.admin:
            return Permission.ADMIN
        if self.push:
            return Permission.WRITE
        if self.pull:
            return Permission.READ
        return Permission.NONE


# --- Pagination and response metadata ---


@dataclass(frozen=True)
class ListOptions:
    """Page request. size <= 0 means the provider's default page size."""

    page: int = 1
    size: int = 0

    @property
    def current(self) -> int:
        return self.page if self.page > 0 else 1


@dataclass(frozen=True)
class CommitListOptions:
    ref: str = ""
    path: str = ""
    page: int = 1
    size: int = 0

    def list_options(self) -> ListOptions:
        return ListOptions(page=self.page, size=self.size)


@dataclass(frozen=True)
class Page:
    """Canonical pagination result. Zero means not applicable/unknown."""

    first: int = 0
    next: int = 0
    prev: int = 0
    last: int = 0
    next_url: str = ""


@dataclass(frozen=True)
class Rate:
    limit: int = 0
    remaining: int = 0
    reset: int = 0


@dataclass(frozen=True)
class Response:
    """Metadata of the transport call behind a result."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    rate: Rate = field(default_factory=Rate)
    page: Page = field(default_factory=Page)


# --- Git ---


@dataclass(frozen=True)
class Reference:
    """Named pointer to a commit. path is the fully qualified ref name."""

    path: str
    sha: str
    name: str = ""


@dataclass(frozen=True)
class Signature:
    name: str = ""
    email: str = ""
    date: datetime | None = None
    login: str = ""
    avatar: str = ""


@dataclass(frozen=True)
class Commit:
    sha: str
    message: str = ""
    author: Signature = field(default_factory=Signature)
    committer: Signature = field(default_factory=Signature)
    link: str = ""


@dataclass(frozen=True)
class Change:
    """One file delta within a diff, in provider order."""

    path: str
    previous_path: str = ""
    added: bool = False
    renamed: bool = False
    deleted: bool = False
    sha: str = ""


# --- Repositories ---


@dataclass(frozen=True)
class Repository:
    id: str
    namespace: str
    name: str
    branch: str = ""
    private: bool = False
    archived: bool = False
    clone: str = ""
    clone_ssh: str = ""
    link: str = ""
    created: datetime | None = None
    updated: datetime | None = None
    perm: Perm | None = None

    @property
    def full_name(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class RepositoryInput:
    namespace: str = ""
    name: str = ""
    description: str = ""
    homepage: str = ""
    private: bool = False


# --- Hooks ---


@dataclass(frozen=True)
class HookEvents:
    branch: bool = False
    push: bool = False
    pull_request: bool = False
    pull_request_comment: bool = False
    tag: bool = False
    issue: bool = False
    issue_comment: bool = False
    review_comment: bool = False


@dataclass(frozen=True)
class Hook:
    id: str
    name: str = ""
    target: str = ""
    events: tuple[str, ...] = ()
    active: bool = False
    skip_verify: bool = False


@dataclass(frozen=True)
class HookInput:
    name: str = ""
    target: str = ""
    secret: str = ""
    events: HookEvents = field(default_factory=HookEvents)
    # Provider-native event names, appended verbatim
    native_events: tuple[str, ...] = ()
    skip_verify: bool = False


# --- Statuses ---


@dataclass(frozen=True)
class Status:
    state: State
    label: str = ""
    desc: str = ""
    target: str = ""


@dataclass(frozen=True)
class StatusInput:
    state: State
    label: str = ""
    desc: str = ""
    target: str = ""


@dataclass(frozen=True)
class CombinedStatus:
    """Provider roll-up of all statuses on a commit."""

    state: State
    sha: str = ""
    statuses: tuple[Status, ...] = ()


# --- Contents ---


@dataclass(frozen=True)
class Content:
    path: str
    data: bytes = b""
    sha: str = ""


@dataclass(frozen=True)
class ContentParams:
    ref: str = ""
    branch: str = ""
    message: str = ""
    data: bytes = b""
    sha: str = ""
    signature: Signature = field(default_factory=Signature)


# --- Helpers ---


def split_repo(repo: str) -> tuple[str, str]:
    """Split "namespace/name" on the last slash.

    Nested namespaces (GitLab subgroups) keep their inner slashes:
    "group/sub/project" -> ("group/sub", "project"). A bare name has an
    empty namespace.
    """
    namespace, _, name = repo.strip("/").rpartition("/")
    return namespace, name


def parse_time(value: Any) -> datetime | None:
    """Parse ISO8601 strings and epoch milliseconds into datetimes."""
    if value in (None, "", 0):
        return None
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
