"""Content-addressed identity of the terraform state artifact.

The identity of a managed unit is the SHA-256 of the raw bytes of
`terraform.tfstate` in its working directory, rendered as lowercase hex.
The artifact is never parsed: formatting-only changes in the state file
produce a new identity, the same as semantic changes.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from collections.abc import Iterator
from contextlib import closing
from pathlib import Path
from typing import BinaryIO

from .config import DEFAULT_STATE_FILENAME
from .errors import ArtifactNotFound, ArtifactReadFailure, CancellationFailure

logger = logging.getLogger(__name__)

# Read size per hashing step; the event loop gets control between chunks
CHUNK_SIZE_BYTES = 64 * 1024


def _open_artifact(path: Path) -> BinaryIO:
    try:
        return path.open("rb")
    except FileNotFoundError as e:
        raise ArtifactNotFound(path) from e
    except OSError as e:
        raise ArtifactReadFailure(path, str(e)) from e


def _iter_chunks(path: Path) -> Iterator[bytes]:
    """Yield the artifact's bytes in order, failing if it ends short.

    The size is taken from the open file descriptor, so a file truncated
    while it is being read raises instead of hashing a prefix.
    """
    with _open_artifact(path) as f:
        try:
            expected = os.fstat(f.fileno()).st_size
            read = 0
            while chunk := f.read(CHUNK_SIZE_BYTES):
                read += len(chunk)
                yield chunk
        except OSError as e:
            raise ArtifactReadFailure(path, str(e)) from e

    if read < expected:
        raise ArtifactReadFailure(
            path, f"truncated while reading: got {read} of {expected} bytes"
        )


def compute_identity(path: Path) -> str:
    """Hash a state artifact synchronously.

    Args:
        path: Full path of the state artifact.

    Returns:
        Lowercase hex SHA-256 of the file content.

    Raises:
        ArtifactNotFound: If the file does not exist.
        ArtifactReadFailure: If the file cannot be fully read.
    """
    digest = hashlib.sha256()
    for chunk in _iter_chunks(path):
        digest.update(chunk)
    return digest.hexdigest()


class IdentityResolver:
    """Resolves the identity of a working directory's state artifact."""

    def __init__(self, state_filename: str = DEFAULT_STATE_FILENAME) -> None:
        self._state_filename = state_filename

    def artifact_path(self, working_dir: Path) -> Path:
        return working_dir / self._state_filename

    async def resolve(self, working_dir: Path) -> str:
        """Hash the state artifact of a working directory.

        Yields to the event loop between chunks so that a cancelled caller
        stops reading promptly.

        Raises:
            ArtifactNotFound: If the artifact does not exist.
            ArtifactReadFailure: If the artifact cannot be fully read.
            CancellationFailure: If the calling task is cancelled mid-read.
        """
        path = self.artifact_path(working_dir)
        digest = hashlib.sha256()
        size = 0

        with closing(_iter_chunks(path)) as chunks:
            try:
                for chunk in chunks:
                    digest.update(chunk)
                    size += len(chunk)
                    await asyncio.sleep(0)
            except asyncio.CancelledError as e:
                raise CancellationFailure(f"reading {path.name}") from e

        identity = digest.hexdigest()

        logger.debug(
            "Resolved state identity",
            extra={"working_dir": str(working_dir), "identity": identity, "bytes": size},
        )
        return identity
