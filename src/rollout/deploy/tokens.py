"""Stage success tokens.

Each stage entry point takes the token issued by the previous stage's
success path and returns its own. Tokens cannot be built outside this
module's ``issue_*`` functions, so calling a stage out of order is a type
error for a checker and a ``TypeError`` at runtime.

Chain::

    ProvisionedToken → PreflightToken → MigratedToken → BuiltToken
        → RolloutToken → StableToken
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rollout.deploy.results import MigrationOutcome, ServiceSnapshot

_SEAL = object()


@dataclass(frozen=True)
class _Token:
    run_id: str
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._seal is not _SEAL:
            raise TypeError(
                f"{type(self).__name__} is issued by its stage and cannot be constructed directly"
            )


@dataclass(frozen=True)
class ProvisionedToken(_Token):
    skipped: bool = False


@dataclass(frozen=True)
class PreflightToken(_Token):
    load_balancer_dns: str = ""
    task_subnets: tuple[str, ...] = ()
    task_security_groups: tuple[str, ...] = ()


@dataclass(frozen=True)
class MigratedToken(_Token):
    """The database schema is current and safe to query."""

    load_balancer_dns: str = ""
    outcome: MigrationOutcome | None = None


@dataclass(frozen=True)
class BuiltToken(_Token):
    load_balancer_dns: str = ""
    image_tag: str = ""
    build_id: str = ""


@dataclass(frozen=True)
class RolloutToken(_Token):
    load_balancer_dns: str = ""
    image_tag: str = ""
    deployment_id: str | None = None


@dataclass(frozen=True)
class StableToken(_Token):
    load_balancer_dns: str = ""
    snapshot: ServiceSnapshot | None = None


def issue_provisioned(run_id: str, *, skipped: bool = False) -> ProvisionedToken:
    return ProvisionedToken(run_id=run_id, skipped=skipped, _seal=_SEAL)


def issue_preflight(
    previous: ProvisionedToken,
    *,
    load_balancer_dns: str,
    task_subnets: tuple[str, ...] = (),
    task_security_groups: tuple[str, ...] = (),
) -> PreflightToken:
    return PreflightToken(
        run_id=previous.run_id,
        load_balancer_dns=load_balancer_dns,
        task_subnets=task_subnets,
        task_security_groups=task_security_groups,
        _seal=_SEAL,
    )


def issue_migrated(previous: PreflightToken, outcome: MigrationOutcome) -> MigratedToken:
    if not outcome.succeeded:
        raise ValueError(f"Cannot issue a migration token for a {outcome.status.value} migration")
    return MigratedToken(
        run_id=previous.run_id,
        load_balancer_dns=previous.load_balancer_dns,
        outcome=outcome,
        _seal=_SEAL,
    )


def issue_built(previous: MigratedToken, *, image_tag: str, build_id: str) -> BuiltToken:
    return BuiltToken(
        run_id=previous.run_id,
        load_balancer_dns=previous.load_balancer_dns,
        image_tag=image_tag,
        build_id=build_id,
        _seal=_SEAL,
    )


def issue_rollout(previous: BuiltToken, *, deployment_id: str | None) -> RolloutToken:
    return RolloutToken(
        run_id=previous.run_id,
        load_balancer_dns=previous.load_balancer_dns,
        image_tag=previous.image_tag,
        deployment_id=deployment_id,
        _seal=_SEAL,
    )


def issue_stable(previous: RolloutToken, snapshot: ServiceSnapshot) -> StableToken:
    return StableToken(
        run_id=previous.run_id,
        load_balancer_dns=previous.load_balancer_dns,
        snapshot=snapshot,
        _seal=_SEAL,
    )


__all__ = [
    "BuiltToken",
    "MigratedToken",
    "PreflightToken",
    "ProvisionedToken",
    "RolloutToken",
    "StableToken",
    "issue_built",
    "issue_migrated",
    "issue_preflight",
    "issue_provisioned",
    "issue_rollout",
    "issue_stable",
]
