"""
Tests for the request lifecycle: receiving, validating, processing and cleanup.
"""

import asyncio
import io
import logging

import pytest
from fastapi import UploadFile

from pdfpro_backend.configuration import make_settings
from pdfpro_backend.errors import (
    EngineError,
    InvalidDocumentError,
    MissingInputError,
    PageSelectionError,
    StorageError,
    UploadTooLargeError,
    ValidationError,
)
from pdfpro_backend.models import UploadedFile
from pdfpro_backend.operations import write_artifact
from pdfpro_backend.pipeline import DeferredCleanupFileResponse, RequestPipeline, Stage


@pytest.fixture
def pipeline_settings(tmp_path):
    return make_settings(
        {
            "storage": {"upload_dir": str(tmp_path / "uploads"), "output_dir": str(tmp_path / "output")},
            "limits": {"max_file_size_mb": 1, "max_files": 3},
            "cleanup": {"grace_seconds": 0},
        }
    )


@pytest.fixture
def pipeline(pipeline_settings):
    return RequestPipeline("test", pipeline_settings)


def _upload(data, filename="doc.pdf"):
    return UploadFile(file=io.BytesIO(data), filename=filename)


def _stored(pipeline, name, data):
    path = pipeline.tracker.allocate("upload", ".pdf")
    path.write_bytes(data)
    return UploadedFile(path=path, original_name=name, size_bytes=len(data))


def _echo(upload, tracker):
    return [write_artifact(tracker, upload.path.read_bytes(), f"out-{upload.original_name}")]


class TestReceive:
    def test_stores_uploads_and_registers_them(self, pipeline, sample_pdf):
        uploads = asyncio.run(pipeline.receive([_upload(sample_pdf)]))

        assert len(uploads) == 1
        assert uploads[0].path.read_bytes() == sample_pdf
        assert uploads[0].size_bytes == len(sample_pdf)
        assert uploads[0].path in pipeline.tracker.pending
        assert pipeline.batch is False

    def test_multiple_uploads_make_a_batch(self, pipeline, sample_pdf):
        asyncio.run(pipeline.receive([_upload(sample_pdf, "a.pdf"), _upload(sample_pdf, "b.pdf")]))
        assert pipeline.batch is True

    def test_nothing_uploaded(self, pipeline):
        with pytest.raises(MissingInputError, match="Please upload at least one PDF file"):
            asyncio.run(pipeline.receive([None, _upload(b"", filename="")]))

    def test_single_file_operations_reject_several_files(self, pipeline, sample_pdf):
        with pytest.raises(ValidationError, match="exactly one file"):
            asyncio.run(pipeline.receive([_upload(sample_pdf), _upload(sample_pdf)], single=True))

    def test_too_many_files(self, pipeline, sample_pdf):
        with pytest.raises(UploadTooLargeError):
            asyncio.run(pipeline.receive([_upload(sample_pdf) for _ in range(4)]))

    def test_oversized_upload_is_rejected(self, pipeline):
        with pytest.raises(UploadTooLargeError, match="1 MB"):
            asyncio.run(pipeline.receive([_upload(b"%PDF" + b"0" * (1024 * 1024))]))

    def test_upload_name_is_sanitized_on_disk(self, pipeline, sample_pdf):
        uploads = asyncio.run(pipeline.receive([_upload(sample_pdf, "../../secret report.PDF")]))
        assert uploads[0].path.parent == pipeline.upload_dir
        assert uploads[0].path.suffix == ".pdf"
        assert uploads[0].original_name == "../../secret report.PDF"


class TestValidate:
    def test_single_invalid_file_is_rejected(self, pipeline):
        bad = _stored(pipeline, "bad.pdf", b"hello")
        with pytest.raises(InvalidDocumentError, match="^Invalid PDF file$"):
            pipeline.validate([bad])

    def test_batch_skips_invalid_files(self, pipeline, sample_pdf):
        pipeline.batch = True
        good = _stored(pipeline, "good.pdf", sample_pdf)
        bad = _stored(pipeline, "bad.pdf", b"hello")

        assert pipeline.validate([bad, good]) == [good]
        assert pipeline.stage is Stage.VALIDATED

    def test_batch_with_no_valid_files(self, pipeline):
        pipeline.batch = True
        uploads = [_stored(pipeline, name, b"hello") for name in ("a.pdf", "b.pdf")]
        with pytest.raises(InvalidDocumentError, match="No valid PDF files"):
            pipeline.validate(uploads)

    def test_strict_batch_names_the_file(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, "good.pdf", sample_pdf), _stored(pipeline, "bad.pdf", b"hello")]
        with pytest.raises(InvalidDocumentError, match="Invalid PDF file: bad.pdf"):
            pipeline.validate(uploads, strict=True)


class TestProcess:
    def test_outputs_keep_input_order(self, pipeline, sample_pdf):
        uploads = [_stored(pipeline, name, sample_pdf) for name in ("b.pdf", "a.pdf")]
        artifacts = asyncio.run(pipeline.process_each(uploads, _echo))
        assert [artifact.suggested_name for artifact in artifacts] == ["out-b.pdf", "out-a.pdf"]
        assert pipeline.stage is Stage.PROCESSED

    def test_batch_skips_failing_files(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, name, sample_pdf) for name in ("a.pdf", "b.pdf")]

        def processor(upload, tracker):
            if upload.original_name == "a.pdf":
                raise PageSelectionError("No valid pages selected")
            return _echo(upload, tracker)

        artifacts = asyncio.run(pipeline.process_each(uploads, processor))
        assert [artifact.suggested_name for artifact in artifacts] == ["out-b.pdf"]

    def test_batch_where_every_file_fails_raises_last_error(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, name, sample_pdf) for name in ("a.pdf", "b.pdf")]

        def processor(upload, tracker):
            raise PageSelectionError(f"nothing in {upload.original_name}")

        with pytest.raises(PageSelectionError, match="nothing in b.pdf"):
            asyncio.run(pipeline.process_each(uploads, processor))

    def test_storage_error_in_batch_fails_the_request(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, name, sample_pdf) for name in ("a.pdf", "b.pdf")]

        def processor(upload, tracker):
            if upload.original_name == "a.pdf":
                raise StorageError("disk full")
            return _echo(upload, tracker)

        with pytest.raises(StorageError, match="disk full"):
            asyncio.run(pipeline.process_each(uploads, processor))

    def test_library_errors_become_engine_errors(self, pipeline, sample_pdf):
        upload = _stored(pipeline, "a.pdf", sample_pdf)

        def processor(upload, tracker):
            raise RuntimeError("library exploded")

        with pytest.raises(EngineError, match="Failed to test a.pdf: library exploded"):
            asyncio.run(pipeline.process_each([upload], processor))


class TestLifecycle:
    def test_failure_drains_everything_the_request_created(self, pipeline, sample_pdf):
        async def scenario():
            async with pipeline:
                uploads = await pipeline.receive([_upload(sample_pdf)])
                await pipeline.process_each(uploads, _echo)
                raise PageSelectionError("stop here")

        with pytest.raises(PageSelectionError):
            asyncio.run(scenario())

        assert pipeline.stage is Stage.FAILED
        assert list(pipeline.upload_dir.iterdir()) == []
        assert list(pipeline.tracker.work_dir.iterdir()) == []

    def test_combined_single_output_is_not_archived(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, name, sample_pdf) for name in ("a.pdf", "b.pdf")]

        def combine(items, tracker):
            return [write_artifact(tracker, b"%PDF-combined", "merged.pdf")]

        response = asyncio.run(pipeline.run_combined(uploads, combine))

        assert pipeline.stage is Stage.DELIVERED
        assert response.filename == "merged.pdf"

    def test_batch_per_file_output_is_always_archived(self, pipeline, sample_pdf):
        pipeline.batch = True
        uploads = [_stored(pipeline, "a.pdf", sample_pdf), _stored(pipeline, "b.pdf", b"junk")]

        response = asyncio.run(pipeline.run_each(uploads, _echo, archive_name="echo.zip"))

        assert response.filename == "echo.zip"
        assert response.tracker.pending[-1].suffix == ".zip"


class TestDelivery:
    def test_failed_send_drains_immediately(self, pipeline, caplog):
        output = pipeline.tracker.allocate("out", ".pdf")
        output.write_bytes(b"%PDF-data")
        response = DeferredCleanupFileResponse(
            output, filename="out.pdf", tracker=pipeline.tracker, grace_seconds=60
        )
        scope = {"type": "http", "method": "GET", "path": "/", "headers": []}

        async def receive():
            return {"type": "http.request", "body": b"", "more_body": False}

        async def send(message):
            raise OSError("connection reset")

        with caplog.at_level(logging.ERROR, logger="pdfpro_backend.pipeline"):
            asyncio.run(response(scope, receive, send))

        assert not output.exists()
        assert pipeline.tracker.pending == []
        assert "Delivery of" in caplog.text
