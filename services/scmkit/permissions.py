"""Permission resolution.

Some providers (Bitbucket Server) have no "what may I do on this repository"
endpoint. For those the level is inferred from a cascade of probes, cheapest
first:

  1. fetch the repository          - denial is terminal: no access at all
  2. a write/admin-gated endpoint  - success proves at least that level
  3. a permission-filtered listing - presence of the repository proves WRITE

Each probe yields a tagged Outcome. NotFound and PermissionDenied are negative
evidence; any other ScmError is a hard error and aborts the cascade. Probes
that cannot raise the level already established are skipped, so the cascade
stops as soon as it has its answer.

Cancellation is never intercepted: a cancelled task aborts whichever probe is
in flight and no later probe is issued.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from scmkit.errors import NEGATIVE_EVIDENCE, ScmError
from scmkit.logging_config import get_logger
from scmkit.models import Perm, Permission, Response

logger = get_logger(__name__)


class Outcome(Enum):
    TERMINAL_NEGATIVE = "terminal_negative"
    PROVISIONAL_POSITIVE = "provisional_positive"
    INCONCLUSIVE = "inconclusive"
    HARD_ERROR = "hard_error"


@dataclass(frozen=True)
class Probe:
    """One cascade step.

    run returns True when the probe proves `grants`, False when it completed
    but found no evidence (e.g. repository absent from a filtered listing), and
    raises ScmError when the request itself failed.
    """

    name: str
    run: Callable[[], Awaitable[bool]]
    grants: Permission
    terminal_on_denied: bool = False


@dataclass(frozen=True)
class ProbeResult:
    """Tagged probe result. error is set exactly when the outcome is HARD_ERROR."""

    outcome: Outcome
    error: ScmError | None = None

    @classmethod
    def hard_error(cls, exc: ScmError) -> "ProbeResult":
        return cls(Outcome.HARD_ERROR, exc)


async def run_probe(probe: Probe) -> ProbeResult:
    """Execute one probe and tag its result."""
    try:
        found = await probe.run()
    except NEGATIVE_EVIDENCE:
        if probe.terminal_on_denied:
            return ProbeResult(Outcome.TERMINAL_NEGATIVE)
        return ProbeResult(Outcome.INCONCLUSIVE)
    except ScmError as exc:
        return ProbeResult.hard_error(exc)

    if found:
        return ProbeResult(Outcome.PROVISIONAL_POSITIVE)
    if probe.terminal_on_denied:
        return ProbeResult(Outcome.TERMINAL_NEGATIVE)
    return ProbeResult(Outcome.INCONCLUSIVE)


async def resolve(probes: Sequence[Probe], repo: str = "") -> Perm:
    """Drive the cascade and return the monotonic permission triple.

    Raises the ScmError of the first probe that hard-errors.
    """
    level = Permission.NONE
    for probe in probes:
        if probe.grants <= level:
            logger.debug("Permission probe skipped", repo=repo, probe=probe.name)
            continue

        result = await run_probe(probe)
        logger.debug(
            "Permission probe finished",
            repo=repo,
            probe=probe.name,
            outcome=result.outcome.value,
        )

        if result.error is not None:
            raise result.error

        match result.outcome:
            case Outcome.TERMINAL_NEGATIVE:
                return Perm.from_level(Permission.NONE)
            case Outcome.PROVISIONAL_POSITIVE:
                level = max(level, probe.grants)
            case _:
                pass

    return Perm.from_level(level)


async def add_collaborator(
    current: Callable[[], Awaitable[tuple[Permission, Response]]],
    grant: Callable[[], Awaitable[Response]],
    desired: Permission,
) -> tuple[bool, bool, Response]:
    """Grant `desired` unless it is already held.

    Returns (granted, already_present, response of the last call issued).
    At most one grant call is issued.
    """
    held, res = await current()
    if held >= desired:
        return False, True, res
    res = await grant()
    return True, False, res
