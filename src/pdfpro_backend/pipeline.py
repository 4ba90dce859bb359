"""
Request lifecycle shared by every document route.

Each request moves through

    RECEIVED -> VALIDATED -> PROCESSED (per file) -> ASSEMBLED -> DELIVERED

and can reach FAILED from any stage. ``RequestPipeline`` is an async context
manager: leaving the block with an exception drains the request's tracker
(uploads and partial outputs) before the error reaches the exception handlers
that render the JSON error body. A successful response drains the tracker
itself, once the body has been sent and the grace period has passed.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from fastapi import UploadFile
from omegaconf import DictConfig
from starlette.concurrency import run_in_threadpool
from starlette.responses import FileResponse
from starlette.types import Receive, Scope, Send

from .assembler import BatchResult, assemble
from .cleanup import TempResourceTracker
from .configuration import max_upload_bytes
from .errors import (
    ArchiveError,
    EngineError,
    InvalidDocumentError,
    MissingInputError,
    PdfProError,
    StorageError,
    UploadTooLargeError,
    ValidationError,
)
from .models import ProducedArtifact, UploadedFile
from .operations import CombinedProcessor, FileProcessor
from .utils import ensure_directory, has_pdf_signature, sanitize_filename, split_extension, unique_filename

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024

SignatureCheck = Callable[[Path], bool]


class Stage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PROCESSED = "processed"
    ASSEMBLED = "assembled"
    DELIVERED = "delivered"
    FAILED = "failed"


class DeferredCleanupFileResponse(FileResponse):
    """
    File response that drains the request tracker once sending has finished.

    After a complete send the drain waits ``grace_seconds``; if sending fails
    (usually a client disconnect) the failure is logged and the drain runs
    at once, since nothing more can be reported to the client.
    """

    def __init__(self, path: Path, *, tracker: TempResourceTracker, grace_seconds: float, **kwargs: Any) -> None:
        super().__init__(path, **kwargs)
        self.tracker = tracker
        self.grace_seconds = grace_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        delivered = False
        try:
            await super().__call__(scope, receive, send)
            delivered = True
        except Exception:
            logger.exception("Delivery of %s failed", self.filename)
        finally:
            if delivered:
                self.tracker.schedule_drain(self.grace_seconds)
            else:
                self.tracker.drain()


class RequestPipeline:
    """
    Drives one request through the document-operation lifecycle.

    Attributes:
        operation: Name used in log lines and error messages
        tracker: Owns every temporary path created for this request
        stage: Last stage reached
    """

    def __init__(self, operation: str, settings: DictConfig) -> None:
        self.operation = operation
        self.upload_dir = ensure_directory(Path(settings.storage.upload_dir))
        self.tracker = TempResourceTracker(Path(settings.storage.output_dir))
        self.max_upload_bytes = max_upload_bytes(settings)
        self.max_files = int(settings.limits.max_files)
        self.grace_seconds = float(settings.cleanup.grace_seconds)
        self.stage = Stage.RECEIVED
        self.batch = False

    async def __aenter__(self) -> "RequestPipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.fail(exc)
        return False

    def fail(self, exc: BaseException) -> None:
        failed_at = self.stage
        self.stage = Stage.FAILED
        removed = self.tracker.drain()
        if isinstance(exc, PdfProError) and exc.status_code < 500:
            logger.info("%s rejected at %s: %s", self.operation, failed_at.value, exc)
        else:
            logger.error("%s failed at %s: %s", self.operation, failed_at.value, exc)
        logger.debug("%s cleaned up %d file(s) after failure", self.operation, len(removed))

    # -- RECEIVED -----------------------------------------------------------

    async def store_upload(self, file: UploadFile) -> UploadedFile:
        """Spool one multipart upload to disk, enforcing the size ceiling."""
        original_name = file.filename or "document"
        _, suffix = split_extension(sanitize_filename(original_name, default_suffix=""))
        destination = self.tracker.register(self.upload_dir / unique_filename("upload", suffix))
        size = 0
        try:
            with destination.open("wb") as buffer:
                while chunk := await file.read(UPLOAD_CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_upload_bytes:
                        raise UploadTooLargeError(
                            f"{original_name} exceeds the {self.max_upload_bytes // (1024 * 1024)} MB upload limit"
                        )
                    buffer.write(chunk)
        except OSError as exc:
            raise StorageError(f"Could not store upload {original_name}: {exc}") from exc
        finally:
            await file.close()
        return UploadedFile(path=destination, original_name=original_name, size_bytes=size)

    async def receive(
        self,
        files: Sequence[Optional[UploadFile]],
        *,
        single: bool = False,
        missing_message: str = "Please upload at least one PDF file",
    ) -> List[UploadedFile]:
        present = [file for file in files if file is not None and file.filename]
        if not present:
            raise MissingInputError(missing_message)
        if single and len(present) > 1:
            raise ValidationError("This operation accepts exactly one file")
        if len(present) > self.max_files:
            raise UploadTooLargeError(f"At most {self.max_files} files can be uploaded at once")

        uploads = [await self.store_upload(file) for file in present]
        self.batch = len(uploads) > 1
        logger.info("%s received %d file(s)", self.operation, len(uploads))
        return uploads

    # -- VALIDATED ----------------------------------------------------------

    def validate(
        self,
        uploads: Sequence[UploadedFile],
        *,
        check: SignatureCheck = has_pdf_signature,
        kind: str = "PDF",
        strict: Optional[bool] = None,
    ) -> List[UploadedFile]:
        """
        Keep uploads that pass the signature check.

        Strict validation (the default for single-file requests) rejects the
        request on the first invalid file; otherwise invalid files are
        skipped, provided at least one file remains.
        """
        strict = not self.batch if strict is None else strict
        valid: List[UploadedFile] = []
        for upload in uploads:
            if check(upload.path):
                valid.append(upload)
                continue
            if strict:
                suffix = f": {upload.original_name}" if self.batch else ""
                raise InvalidDocumentError(f"Invalid {kind} file{suffix}")
            logger.warning("%s skipping invalid %s file %s", self.operation, kind, upload.original_name)

        if not valid:
            raise InvalidDocumentError(f"No valid {kind} files")
        self.stage = Stage.VALIDATED
        return valid

    # -- PROCESSED ----------------------------------------------------------

    def _guarded(self, processor: Callable[..., List[ProducedArtifact]], target: Any, label: str) -> List[ProducedArtifact]:
        try:
            return processor(target, self.tracker)
        except PdfProError:
            raise
        except Exception as exc:
            raise EngineError(f"Failed to {self.operation} {label}: {exc}") from exc

    async def process_each(self, uploads: Sequence[UploadedFile], processor: FileProcessor) -> List[ProducedArtifact]:
        """
        Run ``processor`` on each upload in order.

        In a batch a failing file is logged and skipped; the request only
        fails, with the last error, when no file produced output. Storage and
        archive errors always fail the request.
        """
        artifacts: List[ProducedArtifact] = []
        last_error: Optional[PdfProError] = None
        for upload in uploads:
            try:
                produced = await run_in_threadpool(self._guarded, processor, upload, upload.original_name)
            except (StorageError, ArchiveError):
                raise
            except PdfProError as exc:
                if not self.batch:
                    raise
                logger.warning("%s skipping %s: %s", self.operation, upload.original_name, exc)
                last_error = exc
                continue
            artifacts.extend(produced)

        if not artifacts:
            raise last_error or EngineError(f"Failed to {self.operation}: no output produced")
        self.stage = Stage.PROCESSED
        return artifacts

    async def process_all(self, uploads: Sequence[UploadedFile], processor: CombinedProcessor) -> List[ProducedArtifact]:
        """Run a processor that combines every upload into its output."""
        artifacts = await run_in_threadpool(self._guarded, processor, list(uploads), f"{len(uploads)} files")
        self.stage = Stage.PROCESSED
        return artifacts

    # -- ASSEMBLED / DELIVERED ----------------------------------------------

    async def assemble(
        self,
        artifacts: Sequence[ProducedArtifact],
        *,
        archive_name: str,
        force_archive: Optional[bool] = None,
    ) -> BatchResult:
        """Multi-file requests get an archive unless ``force_archive`` says otherwise."""
        force_archive = self.batch if force_archive is None else force_archive
        result = await assemble(artifacts, archive_name=archive_name, tracker=self.tracker, force_archive=force_archive)
        self.stage = Stage.ASSEMBLED
        return result

    def deliver(self, result: BatchResult) -> DeferredCleanupFileResponse:
        response = DeferredCleanupFileResponse(
            result.path,
            filename=result.download_name,
            tracker=self.tracker,
            grace_seconds=self.grace_seconds,
        )
        self.stage = Stage.DELIVERED
        logger.info("%s delivering %s", self.operation, result.download_name)
        return response

    async def run_each(
        self,
        uploads: Sequence[UploadedFile],
        processor: FileProcessor,
        *,
        archive_name: str,
        check: SignatureCheck = has_pdf_signature,
    ) -> DeferredCleanupFileResponse:
        """VALIDATED through DELIVERED for per-file operations."""
        valid = self.validate(uploads, check=check)
        artifacts = await self.process_each(valid, processor)
        return self.deliver(await self.assemble(artifacts, archive_name=archive_name))

    async def run_combined(
        self,
        uploads: Sequence[UploadedFile],
        processor: CombinedProcessor,
        *,
        check: SignatureCheck = has_pdf_signature,
        kind: str = "PDF",
    ) -> DeferredCleanupFileResponse:
        """VALIDATED through DELIVERED for operations producing one output from all uploads."""
        valid = self.validate(uploads, check=check, kind=kind, strict=True)
        artifacts = await self.process_all(valid, processor)
        return self.deliver(await self.assemble(artifacts, archive_name=f"{self.operation}.zip", force_archive=False))
