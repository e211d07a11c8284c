"""Lifecycle dispatch for `pteraform_apply` resources.

The host orchestrator issues one of five requests per managed unit. Each is a
plain dataclass; Reconciler.reconcile() dispatches on the request type:

| Request  | Effect                                                      |
|----------|-------------------------------------------------------------|
| Create   | init + apply, then hash the state artifact into `id`        |
| Read     | hash the state artifact into `id`, no provisioning          |
| Update   | same as Create, always re-runs the full cycle               |
| Delete   | nothing; the unit records that a cycle ran, it owns nothing  |
| Import   | record holding only the supplied `id`                       |

Whether a change in working_dir/args warrants an update is decided by the
host's own plan/diff. The reconciler never compares prior and planned state.

Each call is stateless given its request. Units with different working
directories can be reconciled concurrently; the same working directory must
be serialized by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .config import Config
from .errors import (
    ArtifactNotFound,
    ArtifactReadFailure,
    CancellationFailure,
    InvocationFailure,
    MissingAttributeError,
)
from .identity import IdentityResolver
from .models import ManagedUnitRecord
from .runner import ProcessRunner, SubprocessRunner, run_provisioning_cycle

logger = logging.getLogger(__name__)


class Verb(str, Enum):
    """Lifecycle verbs issued by the host orchestrator."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    IMPORT = "import"


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class CreateRequest:
    """Provision a newly declared unit."""

    planned: ManagedUnitRecord
    verb: Verb = field(default=Verb.CREATE, init=False)


@dataclass(frozen=True)
class ReadRequest:
    """Refresh the identity of an existing unit."""

    state: ManagedUnitRecord
    verb: Verb = field(default=Verb.READ, init=False)


@dataclass(frozen=True)
class UpdateRequest:
    """Re-provision a unit whose desired attributes changed."""

    planned: ManagedUnitRecord
    prior: ManagedUnitRecord | None = None
    verb: Verb = field(default=Verb.UPDATE, init=False)


@dataclass(frozen=True)
class DeleteRequest:
    """Forget a unit. Provisioned infrastructure is left untouched."""

    state: ManagedUnitRecord
    verb: Verb = field(default=Verb.DELETE, init=False)


@dataclass(frozen=True)
class ImportRequest:
    """Adopt a unit by its identity alone."""

    identity: str
    verb: Verb = field(default=Verb.IMPORT, init=False)


ReconcileRequest = CreateRequest | ReadRequest | UpdateRequest | DeleteRequest | ImportRequest


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class Diagnostic:
    """User-visible error attached to the managed unit."""

    summary: str
    detail: str

    @classmethod
    def from_error(cls, error: Exception) -> Diagnostic:
        if isinstance(error, InvocationFailure):
            return cls("Client Error", f"Unable to run terraform apply, got error: {error}")
        if isinstance(error, ArtifactNotFound | ArtifactReadFailure):
            return cls("Client Error", f"Unable to get ID, got error: {error}")
        if isinstance(error, CancellationFailure):
            return cls("Operation Cancelled", str(error))
        if isinstance(error, MissingAttributeError):
            return cls("Invalid Configuration", str(error))
        return cls("Unexpected Error", f"{type(error).__name__}: {error}")


@dataclass
class ReconcileResult:
    """Outcome of a single reconciliation call."""

    verb: Verb
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    state: ManagedUnitRecord | None = None
    removed: bool = False
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None

    @property
    def identity(self) -> str | None:
        """Resolved identity, None on failure or after delete."""
        if self.state is None:
            return None
        return self.state.id

    def diagnostic(self) -> Diagnostic | None:
        if self.error is None:
            return None
        return Diagnostic.from_error(self.error)


# =============================================================================
# Reconciler
# =============================================================================


def _require_working_dir(record: ManagedUnitRecord, verb: Verb) -> Path:
    if not record.working_dir:
        raise MissingAttributeError("working_dir", verb.value)
    return Path(record.working_dir)


class Reconciler:
    """Maps lifecycle requests onto the process runner and identity resolver.

    Holds only immutable collaborators, so one instance can serve concurrent
    reconciliations of independent units.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        runner: ProcessRunner | None = None,
        resolver: IdentityResolver | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            config: Provider configuration. Defaults to Config().
            runner: Process runner. Defaults to a SubprocessRunner built from config.
            resolver: Identity resolver. Defaults to the config's state filename.
        """
        self._config = config or Config()
        self._runner = runner or SubprocessRunner(self._config)
        self._resolver = resolver or IdentityResolver(self._config.state_filename)

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """Dispatch a lifecycle request and capture its outcome.

        Failures are recorded on the result, never retried or downgraded.
        A failed create/update/read carries no state, so no stale identity
        can reach the host.
        """
        result = ReconcileResult(verb=request.verb)

        try:
            match request:
                case CreateRequest(planned=planned):
                    result.state = await self.create(planned)
                case ReadRequest(state=state):
                    result.state = await self.read(state)
                case UpdateRequest(planned=planned, prior=prior):
                    result.state = await self.update(planned, prior)
                case DeleteRequest(state=state):
                    await self.delete(state)
                    result.removed = True
                case ImportRequest(identity=identity):
                    result.state = await self.import_state(identity)
                case _:
                    raise TypeError(f"Unsupported request: {type(request).__name__}")
        except Exception as e:
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_result(result, request)
        return result

    async def create(self, planned: ManagedUnitRecord) -> ManagedUnitRecord:
        """Run a full provisioning cycle and record the resulting identity.

        Raises:
            MissingAttributeError: If working_dir is absent.
            InvocationFailure: If init or apply fails.
            CancellationFailure: If interrupted.
            ArtifactNotFound: If apply produced no state artifact.
            ArtifactReadFailure: If the state artifact cannot be read.
        """
        return await self._provision(planned, Verb.CREATE)

    async def read(self, state: ManagedUnitRecord) -> ManagedUnitRecord:
        """Refresh the identity from the artifact currently on disk.

        Raises:
            MissingAttributeError: If working_dir is absent (e.g. right after import).
            ArtifactNotFound: If the artifact is missing.
            ArtifactReadFailure: If the artifact cannot be read.
        """
        working_dir = _require_working_dir(state, Verb.READ)
        identity = await self._resolver.resolve(working_dir)
        return state.with_identity(identity)

    async def update(
        self,
        planned: ManagedUnitRecord,
        prior: ManagedUnitRecord | None = None,
    ) -> ManagedUnitRecord:
        """Re-run the full provisioning cycle.

        `prior` is accepted for the host's benefit only; the decision to
        update was already made by the host's plan.
        """
        logger.debug(
            "Updating resource",
            extra={
                "working_dir": planned.working_dir,
                "prior_identity": prior.id if prior else None,
            },
        )
        return await self._provision(planned, Verb.UPDATE)

    async def delete(self, state: ManagedUnitRecord) -> None:
        """Drop the record. No terraform destroy is run."""
        logger.info(
            "Removing resource from state without destroying infrastructure",
            extra={"working_dir": state.working_dir, "identity": state.id},
        )

    async def import_state(self, identity: str) -> ManagedUnitRecord:
        """Build a record from an externally supplied identity.

        Raises:
            MissingAttributeError: If the identity is empty.
        """
        if not identity:
            raise MissingAttributeError("id", Verb.IMPORT.value)
        return ManagedUnitRecord.imported(identity)

    async def _provision(self, planned: ManagedUnitRecord, verb: Verb) -> ManagedUnitRecord:
        working_dir = _require_working_dir(planned, verb)
        await run_provisioning_cycle(self._runner, working_dir, planned.args)
        identity = await self._resolver.resolve(working_dir)
        return planned.with_identity(identity)

    def _log_result(self, result: ReconcileResult, request: ReconcileRequest) -> None:
        """Log the reconciliation result."""
        working_dir = None
        match request:
            case CreateRequest(planned=record) | UpdateRequest(planned=record):
                working_dir = record.working_dir
            case ReadRequest(state=record) | DeleteRequest(state=record):
                working_dir = record.working_dir

        extra = {
            "verb": result.verb.value,
            "working_dir": working_dir,
            "identity": result.identity,
            "duration_seconds": result.duration_seconds,
        }

        if result.error is None:
            logger.info("Reconciliation completed", extra=extra)
        elif isinstance(result.error, CancellationFailure):
            logger.warning(
                "Reconciliation cancelled",
                extra={**extra, "error": str(result.error)},
            )
        else:
            logger.error(
                "Reconciliation failed",
                extra={
                    **extra,
                    "error": str(result.error),
                    "error_type": type(result.error).__name__,
                },
            )
