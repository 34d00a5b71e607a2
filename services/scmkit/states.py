"""Translation tables between canonical enums and provider vocabularies.

Each driver builds its own StateMapping (and PermissionMapping) from its own
tables; nothing here knows about any provider.
"""

from collections.abc import Mapping

from scmkit.models import Permission, State


class StateMapping:
    """One provider's status vocabulary.

    inbound maps native tokens to canonical states (matched case-insensitively,
    anything unmapped is State.UNKNOWN). outbound must cover every State; states
    the provider cannot express point at their closest native token.
    """

    def __init__(self, inbound: Mapping[str, State], outbound: Mapping[State, str]) -> None:
        missing = [s.name for s in State if s not in outbound]
        if missing:
            raise ValueError(f"outbound state table is missing {', '.join(missing)}")
        self._inbound = {k.lower(): v for k, v in inbound.items()}
        self._outbound = dict(outbound)

    def to_canonical(self, native: str | None) -> State:
        return self._inbound.get((native or "").lower(), State.UNKNOWN)

    def from_canonical(self, state: State) -> str:
        return self._outbound[state]

    def representable(self) -> frozenset[State]:
        """States that survive a from_canonical/to_canonical round trip."""
        return frozenset(s for s in State if self.to_canonical(self.from_canonical(s)) is s)


class PermissionMapping:
    """One provider's permission vocabulary.

    Tokens missing from inbound map to Permission.NONE. Outbound has no entry
    for NONE on providers where "no access" is expressed by removal instead of
    a grant.
    """

    def __init__(
        self, inbound: Mapping[str, Permission], outbound: Mapping[Permission, str]
    ) -> None:
        self._inbound = {k.lower(): v for k, v in inbound.items()}
        self._outbound = dict(outbound)

    def to_canonical(self, native: str | None) -> Permission:
        return self._inbound.get((native or "").lower(), Permission.NONE)

    def from_canonical(self, level: Permission) -> str:
        try:
            return self._outbound[level]
        except KeyError:
            raise ValueError(f"permission {level.name} cannot be granted") from None
