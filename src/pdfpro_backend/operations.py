"""
Per-operation processors.

A per-file processor turns one validated upload into one or more artifacts; a
combined processor turns the whole upload list into a single artifact. Every
output path is allocated through the request's tracker so it is reclaimed with
the rest of the request. Processors are synchronous and run in a worker
thread.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from . import engine
from .cleanup import TempResourceTracker
from .errors import EngineError, PageSelectionError, StorageError
from .models import (
    CompressionQuality,
    ImageFormat,
    Orientation,
    PageSize,
    ProducedArtifact,
    UploadedFile,
    WatermarkPosition,
)
from .page_selector import SelectionMode, complement, select_pages
from .utils import sanitize_filename, split_extension


FileProcessor = Callable[[UploadedFile, TempResourceTracker], List[ProducedArtifact]]
CombinedProcessor = Callable[[Sequence[UploadedFile], TempResourceTracker], List[ProducedArtifact]]


def read_upload(upload: UploadedFile) -> bytes:
    try:
        return upload.path.read_bytes()
    except OSError as exc:
        raise StorageError(f"Could not read {upload.original_name}: {exc}") from exc


def write_artifact(tracker: TempResourceTracker, data: bytes, suggested_name: str) -> ProducedArtifact:
    stem, suffix = split_extension(suggested_name)
    path = tracker.allocate(stem, suffix)
    try:
        path.write_bytes(data)
    except OSError as exc:
        raise StorageError(f"Could not write {suggested_name}: {exc}") from exc
    return ProducedArtifact(path=path, suggested_name=suggested_name)


def prefixed_name(prefix: str, upload: UploadedFile) -> str:
    return f"{prefix}-{sanitize_filename(upload.original_name)}"


def split(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    spec: Optional[str],
    combine: bool = False,
) -> List[ProducedArtifact]:
    data = read_upload(upload)
    indices = select_pages(spec, engine.get_total_pages(data), SelectionMode.SELECT)
    if not indices:
        raise PageSelectionError("No valid pages selected")
    if combine:
        return [write_artifact(tracker, engine.copy_pages(data, indices), "split.pdf")]
    return [write_artifact(tracker, engine.copy_pages(data, [index]), f"page-{index + 1}.pdf") for index in indices]


def compress(upload: UploadedFile, tracker: TempResourceTracker, *, quality: CompressionQuality) -> List[ProducedArtifact]:
    data = engine.compress_document(read_upload(upload), quality)
    return [write_artifact(tracker, data, prefixed_name("compressed", upload))]


def rotate(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    angle: int,
    pages: Optional[str],
) -> List[ProducedArtifact]:
    data = read_upload(upload)
    indices = select_pages(pages, engine.get_total_pages(data), SelectionMode.SELECT)
    if not indices:
        raise PageSelectionError("No valid pages to rotate")
    rotated = engine.rotate_pages(data, indices, angle)
    return [write_artifact(tracker, rotated, prefixed_name("rotated", upload))]


def watermark_text(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    text: str,
    position: WatermarkPosition,
    font_size: float,
    opacity: float,
    color: engine.Color,
    rotation: float,
) -> List[ProducedArtifact]:
    data = engine.stamp_text(
        read_upload(upload),
        text,
        position=position,
        font_size=font_size,
        opacity=opacity,
        color=color,
        rotation=rotation,
    )
    return [write_artifact(tracker, data, prefixed_name("watermarked", upload))]


def watermark_image(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    image: UploadedFile,
    position: WatermarkPosition,
    opacity: float,
    scale: float,
) -> List[ProducedArtifact]:
    data = engine.stamp_image(
        read_upload(upload),
        read_upload(image),
        position=position,
        opacity=opacity,
        scale=scale,
    )
    return [write_artifact(tracker, data, prefixed_name("watermarked", upload))]


def add_password(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    user_password: str,
    owner_password: Optional[str],
) -> List[ProducedArtifact]:
    data = engine.encrypt_document(read_upload(upload), user_password, owner_password)
    return [write_artifact(tracker, data, "protected.pdf")]


def remove_password(upload: UploadedFile, tracker: TempResourceTracker, *, password: str) -> List[ProducedArtifact]:
    data = engine.decrypt_document(read_upload(upload), password)
    return [write_artifact(tracker, data, "unlocked.pdf")]


def extract_text(upload: UploadedFile, tracker: TempResourceTracker) -> List[ProducedArtifact]:
    text = engine.extract_text(read_upload(upload))
    stem, _ = split_extension(sanitize_filename(upload.original_name))
    return [write_artifact(tracker, text.encode("utf-8"), f"extracted-{stem}.txt")]


def delete_pages(upload: UploadedFile, tracker: TempResourceTracker, *, pages: str) -> List[ProducedArtifact]:
    data = read_upload(upload)
    total_pages = engine.get_total_pages(data)
    keep = complement(select_pages(pages, total_pages, SelectionMode.SELECT), total_pages)
    if not keep:
        raise PageSelectionError("Cannot delete all pages")
    return [write_artifact(tracker, engine.copy_pages(data, keep), prefixed_name("deleted-pages", upload))]


def reorder_pages(upload: UploadedFile, tracker: TempResourceTracker, *, order: str) -> List[ProducedArtifact]:
    data = read_upload(upload)
    indices = select_pages(order, engine.get_total_pages(data), SelectionMode.PERMUTATION)
    return [write_artifact(tracker, engine.copy_pages(data, indices), prefixed_name("reordered", upload))]


def pdf_to_image(
    upload: UploadedFile,
    tracker: TempResourceTracker,
    *,
    dpi: int,
    image_format: ImageFormat,
) -> List[ProducedArtifact]:
    data = read_upload(upload)
    prefix = tracker.unique_prefix("page")
    try:
        engine.rasterize(data, tracker.work_dir / prefix, dpi, image_format)
    finally:
        # Register whatever was written, including output of a failed run.
        rendered = tracker.discover(prefix)
    if not rendered:
        raise EngineError("No images generated")
    rendered.sort(key=lambda path: int(path.stem.rsplit("-", 1)[-1]))
    return [
        ProducedArtifact(path=path, suggested_name=f"page-{number}{path.suffix}")
        for number, path in enumerate(rendered, start=1)
    ]


def merge(uploads: Sequence[UploadedFile], tracker: TempResourceTracker) -> List[ProducedArtifact]:
    merged = engine.merge_documents(read_upload(upload) for upload in uploads)
    return [write_artifact(tracker, merged, "merged.pdf")]


def images_to_pdf(
    uploads: Sequence[UploadedFile],
    tracker: TempResourceTracker,
    *,
    page_size: PageSize,
    orientation: Orientation,
) -> List[ProducedArtifact]:
    paths: List[Path] = [upload.path for upload in uploads]
    data = engine.images_to_pdf(paths, page_size, orientation)
    return [write_artifact(tracker, data, "images.pdf")]
