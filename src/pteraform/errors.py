"""Typed failures surfaced by the provisioning core.

Every failure raised by the runner, the identity resolver or the reconciler
derives from ProvisioningError so callers can attach it to the managed unit
as a single user-visible diagnostic. Nothing here is retried.
"""

from __future__ import annotations

from pathlib import Path


class ProvisioningError(Exception):
    """Base class for all failures of a reconciliation call."""

    pass


class InvocationFailure(ProvisioningError):
    """A terraform phase exited non-zero or could not be started.

    Attributes:
        phase: Name of the phase that failed ("init" or "apply").
        output: Combined stdout/stderr of the phase, verbatim.
        returncode: Exit status, or None if the process never started.
    """

    def __init__(
        self,
        phase: str,
        output: str = "",
        returncode: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.phase = phase
        self.output = output
        self.returncode = returncode
        self.reason = reason

        if returncode is None:
            detail = reason or "could not be started"
        else:
            detail = reason or f"exit status {returncode}"

        message = f"terraform {phase} failed, got error: {detail}"
        if output:
            message += f", output: {output}"
        super().__init__(message)


class CancellationFailure(ProvisioningError):
    """The operation was cancelled or its deadline elapsed."""

    def __init__(self, operation: str, reason: str = "cancelled") -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} interrupted: {reason}")


class ArtifactNotFound(ProvisioningError):
    """The state artifact does not exist in the working directory."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Unable to open {path.name}, got error: {path} does not exist")


class ArtifactReadFailure(ProvisioningError):
    """The state artifact exists but could not be fully read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Unable to read {path.name}, got error: {reason}")


class MissingAttributeError(ProvisioningError):
    """A record attribute required by the requested verb is absent."""

    def __init__(self, attribute: str, verb: str) -> None:
        self.attribute = attribute
        self.verb = verb
        super().__init__(f"Attribute '{attribute}' is required to {verb} the resource")
