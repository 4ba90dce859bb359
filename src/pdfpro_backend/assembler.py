"""
Turns the artifacts produced for a request into the shape that gets delivered.

One artifact is sent as-is. Several are bundled into a zip archive whose
entries follow input order. The archive is written in a worker thread and the
coroutine only returns once the zip file has been closed, so a half-written
archive is never handed to the response layer.
"""

from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Tuple, Union

from starlette.concurrency import run_in_threadpool

from .cleanup import TempResourceTracker
from .errors import ArchiveError
from .models import ProducedArtifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleFile:
    artifact: ProducedArtifact

    @property
    def path(self) -> Path:
        return self.artifact.path

    @property
    def download_name(self) -> str:
        return self.artifact.suggested_name


@dataclass(frozen=True)
class Archive:
    artifacts: Tuple[ProducedArtifact, ...]
    archive_name: str
    path: Path

    @property
    def download_name(self) -> str:
        return self.archive_name

    def entry_names(self) -> list[str]:
        return [artifact.suggested_name for artifact in self.artifacts]


BatchResult = Union[SingleFile, Archive]


def write_archive(destination: Path, artifacts: Sequence[ProducedArtifact]) -> None:
    """
    Write ``artifacts`` into a deflate-compressed zip at ``destination``.

    Entry names are the artifacts' suggested names. Duplicates are written as
    separate entries; extracting tools keep the last one.

    Raises:
        ArchiveError: If any entry cannot be written or the archive cannot be closed
    """
    try:
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for artifact in artifacts:
                archive.write(artifact.path, arcname=artifact.suggested_name)
    except (OSError, ValueError, zipfile.LargeZipFile) as exc:
        raise ArchiveError(f"Failed to create zip file: {exc}") from exc


async def assemble(
    artifacts: Sequence[ProducedArtifact],
    *,
    archive_name: str,
    tracker: TempResourceTracker,
    force_archive: bool = False,
) -> BatchResult:
    """
    Decide between a single-file and an archive response.

    Args:
        artifacts: Outputs in the order they should appear to the client
        archive_name: Download name used when an archive is built
        tracker: Request tracker; the archive path is registered before writing
        force_archive: Build an archive even for a single artifact. Used for
            multi-file uploads, whose response is always a zip.

    Raises:
        ValueError: If ``artifacts`` is empty
        ArchiveError: If the archive cannot be written
    """
    if not artifacts:
        raise ValueError("assemble() requires at least one artifact")

    if len(artifacts) == 1 and not force_archive:
        return SingleFile(artifacts[0])

    archive_path = tracker.allocate(Path(archive_name).stem, ".zip")
    await run_in_threadpool(write_archive, archive_path, artifacts)
    logger.info("Built archive %s with %d entries", archive_name, len(artifacts))
    return Archive(artifacts=tuple(artifacts), archive_name=archive_name, path=archive_path)
