"""Terraform process invocation.

A provisioning cycle is two separate external invocations against the same
working directory:

1. `terraform init`
2. `terraform apply -auto-approve <args...>` (only if init succeeded)

Each phase merges stdout and stderr into one buffer. A non-zero exit becomes
an InvocationFailure carrying that buffer verbatim. There are no retries at
this layer; retry policy belongs to the host orchestrator.

CANCELLATION:
Both phases run under the caller's task, each in its own process group. If
the task is cancelled, or the phase deadline from Config elapses, the group
is sent SIGTERM, given the configured grace period, then sent SIGKILL. This
reaches providers and local-exec commands terraform started, not only
terraform itself. The child is reaped before CancellationFailure is raised.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import time
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Protocol

from .config import Config
from .errors import CancellationFailure, InvocationFailure

logger = logging.getLogger(__name__)

# Fixed flags preceding the caller's arguments on apply
APPLY_FLAGS: tuple[str, ...] = ("-auto-approve",)

# Bound on waiting for the child after SIGKILL went to its process group
REAP_TIMEOUT_SECONDS = 5.0


class Phase(str, Enum):
    """Phases of a provisioning cycle, in execution order."""

    INIT = "init"
    APPLY = "apply"


class ProcessRunner(Protocol):
    """Runs one phase of a provisioning cycle.

    Implementations return the combined output of the phase, or raise
    InvocationFailure / CancellationFailure.
    """

    async def run(self, working_dir: Path, phase: Phase, args: Sequence[str] = ()) -> str: ...


class ExecutableResolver:
    """Resolves the terraform executable for each invocation.

    The binary may be a bare name looked up on PATH or an explicit path.
    Resolution happens per call so several resolvers (and therefore several
    terraform versions) can coexist in one process.
    """

    def __init__(self, binary: str) -> None:
        self._binary = binary

    @property
    def binary(self) -> str:
        return self._binary

    def resolve(self) -> str | None:
        """Return the absolute path of the executable, or None if not found."""
        return shutil.which(self._binary)


def build_command(executable: str, phase: Phase, args: Sequence[str] = ()) -> list[str]:
    """Build the argv for a phase.

    init never receives caller arguments. apply receives the fixed flags
    followed by the caller's arguments, unmodified and in order.
    """
    if phase is Phase.INIT:
        return [executable, Phase.INIT.value]
    return [executable, Phase.APPLY.value, *APPLY_FLAGS, *args]


class SubprocessRunner:
    """ProcessRunner backed by real child processes."""

    def __init__(
        self,
        config: Config,
        resolver: ExecutableResolver | None = None,
    ) -> None:
        """Initialize runner.

        Args:
            config: Validated provider configuration (timeouts, grace period).
            resolver: Executable resolution strategy. Defaults to resolving
                config.terraform_binary.
        """
        self._config = config
        self._resolver = resolver or ExecutableResolver(config.terraform_binary)

    def _timeout_for(self, phase: Phase) -> float | None:
        if phase is Phase.INIT:
            return self._config.init_timeout
        return self._config.apply_timeout

    @staticmethod
    def _child_env() -> dict[str, str]:
        env = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        return env

    async def run(self, working_dir: Path, phase: Phase, args: Sequence[str] = ()) -> str:
        """Run a single phase and return its combined output.

        Args:
            working_dir: Directory holding the terraform configuration.
            phase: Which phase to run.
            args: Caller arguments (ignored for init).

        Returns:
            Combined stdout/stderr of the phase.

        Raises:
            InvocationFailure: If the phase could not start or exited non-zero.
            CancellationFailure: If the task was cancelled or the deadline elapsed.
        """
        executable = self._resolver.resolve()
        if executable is None:
            raise InvocationFailure(
                phase.value,
                reason=f"executable '{self._resolver.binary}' not found",
            )

        cmd = build_command(executable, phase, args)
        started = time.monotonic()

        logger.info(
            "Starting terraform phase",
            extra={"phase": phase.value, "working_dir": str(working_dir), "argc": len(args)},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=working_dir,
                env=self._child_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            # Missing working directory, permission denied, exec format error
            raise InvocationFailure(phase.value, reason=str(e)) from e
        except asyncio.CancelledError as e:
            # asyncio kills and reaps a child whose startup was interrupted
            raise CancellationFailure(f"terraform {phase.value}") from e

        try:
            async with asyncio.timeout(self._timeout_for(phase)):
                stdout, _ = await process.communicate()
        except TimeoutError as e:
            await self._terminate(process, phase)
            raise CancellationFailure(
                f"terraform {phase.value}", reason="deadline exceeded"
            ) from e
        except asyncio.CancelledError as e:
            await self._terminate(process, phase)
            raise CancellationFailure(f"terraform {phase.value}") from e

        output = stdout.decode("utf-8", errors="replace")
        duration = time.monotonic() - started

        if process.returncode != 0:
            logger.error(
                "Terraform phase failed",
                extra={
                    "phase": phase.value,
                    "working_dir": str(working_dir),
                    "returncode": process.returncode,
                    "duration_seconds": duration,
                },
            )
            raise InvocationFailure(phase.value, output=output, returncode=process.returncode)

        logger.info(
            "Terraform phase completed",
            extra={
                "phase": phase.value,
                "working_dir": str(working_dir),
                "duration_seconds": duration,
            },
        )
        return output

    async def _terminate(self, process: asyncio.subprocess.Process, phase: Phase) -> None:
        """Stop the child's process group and reap the child.

        SIGTERM lets terraform release its state lock. SIGKILL goes to the
        group once the grace period ends, even if this wait is itself
        cancelled, so nothing terraform started is left running.
        """
        try:
            if process.returncode is None:
                logger.warning(
                    "Terminating terraform phase",
                    extra={"phase": phase.value, "pid": process.pid},
                )
                _signal_group(process, signal.SIGTERM)
                try:
                    await asyncio.wait_for(
                        process.wait(), timeout=self._config.terminate_grace_seconds
                    )
                except TimeoutError:
                    logger.warning(
                        "Terraform phase still running after SIGTERM, killing",
                        extra={"phase": phase.value, "pid": process.pid},
                    )
        finally:
            # Also reaches group members that outlived terraform itself
            _signal_group(process, signal.SIGKILL)

        try:
            await asyncio.wait_for(process.wait(), timeout=REAP_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.error(
                "Terraform phase not reaped after SIGKILL",
                extra={"phase": phase.value, "pid": process.pid},
            )


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    # The child leads its own session, so its pid is the process group id
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass


async def run_provisioning_cycle(
    runner: ProcessRunner,
    working_dir: Path,
    args: Sequence[str] = (),
) -> None:
    """Run init then apply. apply is never started if init fails.

    Raises:
        InvocationFailure: From the first failing phase.
        CancellationFailure: If interrupted during either phase.
    """
    await runner.run(working_dir, Phase.INIT)
    await runner.run(working_dir, Phase.APPLY, args)
