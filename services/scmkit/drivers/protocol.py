"""Provider driver abstraction.

Defines the Driver protocol that every provider implementation conforms to.
Callers work against this interface, not specific providers.

Every method is async and returns (result, Response); deletes return the
Response alone. Failures raise a classified ScmError, and operations a
provider does not offer raise UnsupportedError.
"""

from typing import Protocol, runtime_checkable

from scmkit.config import DriverKind
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
    Status,
    StatusInput,
)


@runtime_checkable
class Driver(Protocol):
    """Capability set shared by all providers.

    Repository ids are "namespace/name" strings.
    """

    kind: DriverKind

    # --- References and commits ---

    async def find_commit(self, repo: str, ref: str) -> tuple[Commit, Response]:
        """Get a single commit by SHA or ref."""
        ...

    async def find_branch(self, repo: str, name: str) -> tuple[Reference, Response]:
        ...

    async def find_tag(self, repo: str, name: str) -> tuple[Reference, Response]:
        ...

    async def list_branches(
        self, repo: str, opts: ListOptions
    ) -> tuple[list[Reference], Response]:
        ...

    async def list_tags(self, repo: str, opts: ListOptions) -> tuple[list[Reference], Response]:
        ...

    async def list_commits(
        self, repo: str, opts: CommitListOptions
    ) -> tuple[list[Commit], Response]:
        ...

    async def list_changes(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        """List the file changes introduced by one commit."""
        ...

    async def compare_commits(
        self, repo: str, source: str, target: str, opts: ListOptions
    ) -> tuple[list[Change], Response]:
        """List the file changes between two commits."""
        ...

    async def create_ref(self, repo: str, name: str, sha: str) -> tuple[Reference, Response]:
        """Create a branch named `name` pointing at `sha`."""
        ...

    async def delete_ref(self, repo: str, name: str) -> Response:
        ...

    async def get_default_branch(self, repo: str) -> tuple[Reference, Response]:
        ...

    # --- Repositories ---

    async def find_repository(self, repo: str) -> tuple[Repository, Response]:
        ...

    async def find_perms(self, repo: str) -> tuple[Perm, Response]:
        """Effective permissions of the authenticated principal."""
        ...

    async def find_user_permission(self, repo: str, user: str) -> tuple[Permission, Response]:
        """Permission level of a named user, as reported by the provider."""
        ...

    async def add_collaborator(
        self, repo: str, user: str, permission: Permission
    ) -> tuple[bool, bool, Response]:
        """Grant `permission` to `user` unless already held.

        Returns (granted, already_present, response).
        """
        ...

    async def list_repositories(
        self, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        """Repositories visible to the authenticated principal."""
        ...

    async def list_organisation_repositories(
        self, namespace: str, opts: ListOptions
    ) -> tuple[list[Repository], Response]:
        ...

    async def create_repository(self, data: RepositoryInput) -> tuple[Repository, Response]:
        ...

    async def fork_repository(
        self, data: RepositoryInput, origin: str
    ) -> tuple[Repository, Response]:
        """Fork `origin` into data.namespace."""
        ...

    # --- Hooks ---

    async def find_hook(self, repo: str, hook_id: str) -> tuple[Hook, Response]:
        ...

    async def list_hooks(self, repo: str, opts: ListOptions) -> tuple[list[Hook], Response]:
        ...

    async def create_hook(self, repo: str, data: HookInput) -> tuple[Hook, Response]:
        ...

    async def update_hook(
        self, repo: str, hook_id: str, data: HookInput
    ) -> tuple[Hook, Response]:
        ...

    async def delete_hook(self, repo: str, hook_id: str) -> Response:
        ...

    # --- Statuses ---

    async def list_statuses(
        self, repo: str, ref: str, opts: ListOptions
    ) -> tuple[list[Status], Response]:
        ...

    async def find_combined_status(
        self, repo: str, ref: str
    ) -> tuple[CombinedStatus, Response]:
        ...

    async def create_status(
        self, repo: str, ref: str, data: StatusInput
    ) -> tuple[Status, Response]:
        ...

    # --- Contents ---

    async def find_content(self, repo: str, path: str, ref: str) -> tuple[Content, Response]:
        ...

    async def create_content(self, repo: str, path: str, params: ContentParams) -> Response:
        ...
