"""
Pytest configuration and fixtures for PDF Pro Backend tests.
"""

import io
import os
import shutil
import tempfile
from pathlib import Path

import pymupdf
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from pypdf import PdfReader

# Set test environment variables before importing the app
os.environ["PDFPRO_UPLOAD_DIR"] = tempfile.mkdtemp(prefix="pdfpro_test_uploads_")
os.environ["PDFPRO_OUTPUT_DIR"] = tempfile.mkdtemp(prefix="pdfpro_test_output_")
os.environ["PDFPRO_CLEANUP_GRACE_SECONDS"] = "0"
os.environ["PDFPRO_ADMIN_PASSWORD"] = "test-admin-password"

from pdfpro_backend.cleanup import TempResourceTracker  # noqa: E402
from pdfpro_backend.main import app  # noqa: E402

BASE_PAGE_WIDTH = 200


def page_width(index: int) -> int:
    """Width given to page ``index`` by ``make_pdf``; lets tests identify pages."""
    return BASE_PAGE_WIDTH + 10 * index


def build_pdf(pages: int = 3) -> bytes:
    doc = pymupdf.open()
    for index in range(pages):
        page = doc.new_page(width=page_width(index), height=300)
        page.insert_text((20, 40), f"Page {index + 1}", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def page_widths(data: bytes) -> list[int]:
    return [round(float(page.mediabox.width)) for page in PdfReader(io.BytesIO(data)).pages]


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Create and cleanup test directories."""
    output_dir = os.environ["PDFPRO_OUTPUT_DIR"]
    upload_dir = os.environ["PDFPRO_UPLOAD_DIR"]

    yield {
        "output": Path(output_dir),
        "upload": Path(upload_dir),
    }

    # Cleanup after all tests
    shutil.rmtree(output_dir, ignore_errors=True)
    shutil.rmtree(upload_dir, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def make_pdf():
    """Factory for in-memory PDFs whose page ``i`` is ``page_width(i)`` points wide."""
    return build_pdf


@pytest.fixture
def sample_pdf(make_pdf):
    return make_pdf(3)


@pytest.fixture
def make_png():
    def _make(width: int = 40, height: int = 30, color: str = "red") -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format="PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def stored_files(test_dirs):
    """Snapshot of every file currently in the upload and output directories."""

    def _snapshot() -> set[Path]:
        return {path for directory in test_dirs.values() for path in directory.iterdir()}

    return _snapshot


@pytest.fixture
def tracker(tmp_path):
    return TempResourceTracker(tmp_path / "work")
