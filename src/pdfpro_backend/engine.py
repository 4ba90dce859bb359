"""
Document Engine: the document and image capabilities the API is built on.

Every function takes and returns plain bytes (or paths for rasterized output)
so callers never hold library handles across suspension points. pypdf covers
page copying, rotation, merging, compression and encryption; PyMuPDF covers
drawing, text extraction and rasterization; Pillow prepares raster images.
"""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import pymupdf
from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PasswordType, PdfReader, PdfWriter
from pypdf.constants import UserAccessPermissions
from pypdf.generic import NameObject, NumberObject

from .errors import InvalidPasswordError
from .models import CompressionQuality, ImageFormat, Orientation, PageSize, WatermarkPosition

logger = logging.getLogger(__name__)

Color = Tuple[float, float, float]

VALID_ROTATIONS = (90, 180, 270)

# Points (1/72 inch), portrait.
PAGE_DIMENSIONS = {
    PageSize.A4: (595.0, 842.0),
    PageSize.LETTER: (612.0, 792.0),
}
IMAGE_PAGE_MARGIN = 36.0

# JPEG quality used when recompressing embedded images; None keeps them untouched.
IMAGE_QUALITY = {
    CompressionQuality.HIGH: None,
    CompressionQuality.MEDIUM: 75,
    CompressionQuality.LOW: 50,
}

WATERMARK_FONT = "hebo"  # Helvetica-Bold
WATERMARK_MARGIN = 50.0

_HEX_COLOR = re.compile(r"#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})", re.IGNORECASE)


def _reader(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def _to_bytes(writer: PdfWriter) -> bytes:
    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def get_total_pages(data: bytes) -> int:
    """Return total page count from PDF bytes."""
    return len(_reader(data).pages)


def copy_pages(data: bytes, indices: Sequence[int]) -> bytes:
    """Build a new PDF from the 0-based ``indices`` of ``data``, in that order."""
    reader = _reader(data)
    writer = PdfWriter()
    for index in indices:
        writer.add_page(reader.pages[index])
    return _to_bytes(writer)


def rotate_pages(data: bytes, indices: Iterable[int], angle: int) -> bytes:
    """Add ``angle`` degrees to the rotation of each selected page, modulo 360."""
    if angle % 90 != 0:
        raise ValueError("Rotation angle must be a multiple of 90")
    writer = PdfWriter(clone_from=_reader(data))
    for index in indices:
        page = writer.pages[index]
        page[NameObject("/Rotate")] = NumberObject((page.rotation + angle) % 360)
    return _to_bytes(writer)


def merge_documents(documents: Iterable[bytes]) -> bytes:
    """Concatenate every page of every document, in order."""
    writer = PdfWriter()
    for data in documents:
        writer.append(_reader(data))
    return _to_bytes(writer)


def _recompress_images(page, quality: int) -> None:
    for image in page.images:
        try:
            image.replace(image.image, quality=quality)
        except (OSError, ValueError, TypeError) as exc:
            logger.debug("Keeping original image %s: %s", image.name, exc)


def compress_document(data: bytes, quality: CompressionQuality) -> bytes:
    writer = PdfWriter(clone_from=_reader(data))
    image_quality = IMAGE_QUALITY[quality]
    for page in writer.pages:
        if image_quality is not None:
            _recompress_images(page, image_quality)
        page.compress_content_streams(level=9)
    writer.compress_identical_objects(remove_identicals=True, remove_orphans=True)
    return _to_bytes(writer)


def encrypt_document(data: bytes, user_password: str, owner_password: Optional[str]) -> bytes:
    """
    Encrypt with AES-256. Printing stays allowed; editing, copying,
    annotating, form filling and assembly are denied.
    """
    writer = PdfWriter(clone_from=_reader(data))
    writer.encrypt(
        user_password=user_password,
        owner_password=owner_password or None,
        algorithm="AES-256",
        permissions_flag=UserAccessPermissions.PRINT | UserAccessPermissions.PRINT_TO_REPRESENTATION,
    )
    return _to_bytes(writer)


def decrypt_document(data: bytes, password: str) -> bytes:
    """Return an unencrypted copy; unencrypted input is copied unchanged."""
    reader = _reader(data)
    if reader.is_encrypted and reader.decrypt(password) == PasswordType.NOT_DECRYPTED:
        raise InvalidPasswordError("Incorrect password")
    return _to_bytes(PdfWriter(clone_from=reader))


def extract_text(data: bytes) -> str:
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        pages = [page.get_text() for page in doc]
    return "\n".join(pages).strip()


def parse_color(value: str) -> Color:
    """Convert ``#rrggbb`` to RGB floats; anything else is black."""
    match = _HEX_COLOR.fullmatch(value.strip())
    if not match:
        return (0.0, 0.0, 0.0)
    return tuple(int(part, 16) / 255 for part in match.groups())  # type: ignore[return-value]


def _anchor(rect: pymupdf.Rect, position: WatermarkPosition, width: float, height: float) -> pymupdf.Point:
    """Top-left corner of a ``width`` x ``height`` box placed on the page."""
    left = WATERMARK_MARGIN
    right = rect.width - WATERMARK_MARGIN - width
    top = WATERMARK_MARGIN
    bottom = rect.height - WATERMARK_MARGIN - height
    anchors = {
        WatermarkPosition.CENTER: ((rect.width - width) / 2, (rect.height - height) / 2),
        WatermarkPosition.TOP_LEFT: (left, top),
        WatermarkPosition.TOP_RIGHT: (right, top),
        WatermarkPosition.BOTTOM_LEFT: (left, bottom),
        WatermarkPosition.BOTTOM_RIGHT: (right, bottom),
    }
    x, y = anchors[position]
    return pymupdf.Point(x, y)


def stamp_text(
    data: bytes,
    text: str,
    *,
    position: WatermarkPosition,
    font_size: float,
    opacity: float,
    color: Color,
    rotation: float,
) -> bytes:
    """Draw ``text`` on every page, rotated ``rotation`` degrees about its centre."""
    text_width = pymupdf.get_text_length(text, fontname=WATERMARK_FONT, fontsize=font_size)
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            corner = _anchor(page.rect, position, text_width, font_size)
            baseline = pymupdf.Point(corner.x, corner.y + font_size)
            pivot = pymupdf.Point(corner.x + text_width / 2, corner.y + font_size / 2)
            page.insert_text(
                baseline,
                text,
                fontsize=font_size,
                fontname=WATERMARK_FONT,
                color=color,
                fill_opacity=opacity,
                morph=(pivot, pymupdf.Matrix(rotation)),
                overlay=True,
            )
        return doc.tobytes(garbage=3, deflate=True)


def _translucent_png(image_bytes: bytes, opacity: float) -> Tuple[bytes, int, int]:
    with Image.open(io.BytesIO(image_bytes)) as source:
        image = ImageOps.exif_transpose(source).convert("RGBA")
    alpha = image.getchannel("A").point(lambda value: int(value * opacity))
    image.putalpha(alpha)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue(), image.width, image.height


def stamp_image(
    data: bytes,
    image_bytes: bytes,
    *,
    position: WatermarkPosition,
    opacity: float,
    scale: float,
) -> bytes:
    """Overlay an image on every page at ``scale`` times the page width."""
    stamp, image_width, image_height = _translucent_png(image_bytes, opacity)
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            width = page.rect.width * scale
            height = width * image_height / image_width
            corner = _anchor(page.rect, position, width, height)
            target = pymupdf.Rect(corner.x, corner.y, corner.x + width, corner.y + height)
            page.insert_image(target, stream=stamp, overlay=True)
        return doc.tobytes(garbage=3, deflate=True)


def rasterize(data: bytes, prefix: Path, dpi: int, image_format: ImageFormat) -> int:
    """
    Render each page to ``<prefix>-000.<ext>``, ``<prefix>-001.<ext>``, ...

    Returns:
        Number of pages rendered
    """
    extension = "jpg" if image_format is ImageFormat.JPEG else "png"
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        for number, page in enumerate(doc):
            pixmap = page.get_pixmap(dpi=dpi)
            pixmap.save(f"{prefix}-{number:03d}.{extension}")
        return doc.page_count


def is_supported_image(path: Path) -> bool:
    try:
        with Image.open(path) as image:
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False


def _page_dimensions(
    page_size: PageSize, orientation: Orientation, image_width: int, image_height: int
) -> Tuple[float, float]:
    if page_size is PageSize.FIT:
        return float(image_width), float(image_height)
    width, height = PAGE_DIMENSIONS[page_size]
    if orientation is Orientation.LANDSCAPE:
        width, height = height, width
    return width, height


def _normalized_png(path: Path) -> Tuple[bytes, int, int]:
    with Image.open(path) as source:
        image = ImageOps.exif_transpose(source)
        if image.mode not in ("RGB", "RGBA", "L"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue(), image.width, image.height


def images_to_pdf(paths: Sequence[Path], page_size: PageSize, orientation: Orientation) -> bytes:
    """One page per image, each scaled to fit its page with the aspect ratio kept."""
    with pymupdf.open() as doc:
        for path in paths:
            stream, image_width, image_height = _normalized_png(path)
            width, height = _page_dimensions(page_size, orientation, image_width, image_height)
            page = doc.new_page(width=width, height=height)
            margin = 0.0 if page_size is PageSize.FIT else IMAGE_PAGE_MARGIN
            target = pymupdf.Rect(margin, margin, width - margin, height - margin)
            page.insert_image(target, stream=stream, keep_proportion=True)
        return doc.tobytes(garbage=3, deflate=True)
