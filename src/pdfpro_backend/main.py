from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import engine, operations
from .configuration import configure_logging, get_settings
from .errors import InvalidDocumentError, MissingInputError, PdfProError, ValidationError
from .middleware import RequestCounterMiddleware
from .models import (
    AdminLoginRequest,
    AdminLoginResponse,
    AdminStats,
    CompressionQuality,
    HealthResponse,
    ImageFormat,
    Orientation,
    PageSize,
    TogglePriorityRequest,
    TogglePriorityResponse,
    WatermarkPosition,
)
from .pipeline import DeferredCleanupFileResponse, RequestPipeline
from .service_state import ServiceState
from .utils import ensure_directory

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings)

app = FastAPI(title=settings.server.title, version=settings.server.version)

service_state = ServiceState(admin_password=settings.admin.password)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.server.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestCounterMiddleware, state=service_state)

ensure_directory(Path(settings.storage.upload_dir))
ensure_directory(Path(settings.storage.output_dir))


def get_service_state() -> ServiceState:
    return service_state


def require_admin(
    x_admin_token: Optional[str] = Header(None),
    state: ServiceState = Depends(get_service_state),
) -> None:
    if not state.is_authorized(x_admin_token):
        raise HTTPException(status_code=401, detail="Admin authentication required")


def _collect(files: Optional[List[UploadFile]], file: Optional[UploadFile]) -> List[Optional[UploadFile]]:
    """Accept documents under both the ``files`` and the ``file`` field."""
    return [*(files or []), file]


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------
@app.exception_handler(PdfProError)
async def handle_pdfpro_error(request: Request, exc: PdfProError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
        messages.append(f"{field}: {error.get('msg', 'invalid value')}")
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:  # noqa: BLE001
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", message="PDF Pro server is running")


# ---------------------------------------------------------------------------
# Document operations
# ---------------------------------------------------------------------------
@app.post("/api/merge")
async def merge(
    files: Optional[List[UploadFile]] = File(None),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("merge", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, None), missing_message="Please upload at least two PDF files")
        if len(uploads) < 2:
            raise MissingInputError("Please upload at least two PDF files")
        return await pipeline.run_combined(uploads, operations.merge)


@app.post("/api/split")
async def split(
    file: Optional[UploadFile] = File(None),
    files: Optional[List[UploadFile]] = File(None),
    ranges: Optional[str] = Form(None),
    pages: Optional[str] = Form(None),
    combine: bool = Form(False),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("split", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, file), single=True, missing_message="Please upload a PDF file")
        processor = partial(operations.split, spec=ranges or pages, combine=combine)
        return await pipeline.run_each(uploads, processor, archive_name="split-pages.zip")


@app.post("/api/compress")
async def compress(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
    quality: CompressionQuality = Form(CompressionQuality.MEDIUM),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("compress", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, file))
        processor = partial(operations.compress, quality=quality)
        return await pipeline.run_each(uploads, processor, archive_name="compressed-pdfs.zip")


@app.post("/api/rotate")
async def rotate(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
    angle: int = Form(90),
    pages: Optional[str] = Form(None),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("rotate", settings) as pipeline:
        if angle not in engine.VALID_ROTATIONS:
            logger.warning("Unsupported rotation angle %s, using 90", angle)
            angle = 90
        uploads = await pipeline.receive(_collect(files, file))
        processor = partial(operations.rotate, angle=angle, pages=pages)
        return await pipeline.run_each(uploads, processor, archive_name="rotated-pdfs.zip")


@app.post("/api/watermark")
async def watermark(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
    watermark_image: Optional[UploadFile] = File(None, alias="watermarkImage"),
    text: Optional[str] = Form(None),
    position: Optional[WatermarkPosition] = Form(None),
    opacity: Optional[float] = Form(None),
    font_size: Optional[float] = Form(None, alias="fontSize"),
    color: Optional[str] = Form(None),
) -> DeferredCleanupFileResponse:
    defaults = settings.watermark
    position = position or WatermarkPosition(defaults.position)
    opacity = min(max(defaults.opacity if opacity is None else opacity, 0.0), 1.0)
    font_size = defaults.font_size if font_size is None else font_size
    has_image = watermark_image is not None and bool(watermark_image.filename)

    async with RequestPipeline("watermark", settings) as pipeline:
        if not has_image and (text is None or not text.strip()):
            raise MissingInputError("Please provide watermark text")
        if font_size <= 0:
            raise ValidationError("fontSize must be a positive number")
        uploads = await pipeline.receive(_collect(files, file))

        if has_image:
            stamp = await pipeline.store_upload(watermark_image)  # type: ignore[arg-type]
            if not engine.is_supported_image(stamp.path):
                raise InvalidDocumentError("Invalid watermark image")
            processor = partial(
                operations.watermark_image,
                image=stamp,
                position=position,
                opacity=opacity,
                scale=float(defaults.image_scale),
            )
        else:
            processor = partial(
                operations.watermark_text,
                text=text.strip(),  # type: ignore[union-attr]
                position=position,
                font_size=font_size,
                opacity=opacity,
                color=engine.parse_color(color or defaults.color),
                rotation=float(defaults.rotation),
            )
        return await pipeline.run_each(uploads, processor, archive_name="watermarked-pdfs.zip")


@app.post("/api/password/add")
async def add_password(
    file: Optional[UploadFile] = File(None),
    files: Optional[List[UploadFile]] = File(None),
    user_password: Optional[str] = Form(None, alias="userPassword"),
    owner_password: Optional[str] = Form(None, alias="ownerPassword"),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("protect", settings) as pipeline:
        if not user_password and not owner_password:
            raise MissingInputError("Please provide a user or owner password")
        uploads = await pipeline.receive(_collect(files, file), single=True, missing_message="Please upload a PDF file")
        processor = partial(operations.add_password, user_password=user_password or "", owner_password=owner_password)
        return await pipeline.run_each(uploads, processor, archive_name="protected.zip")


@app.post("/api/password/remove")
async def remove_password(
    file: Optional[UploadFile] = File(None),
    files: Optional[List[UploadFile]] = File(None),
    password: str = Form(""),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("unlock", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, file), single=True, missing_message="Please upload a PDF file")
        processor = partial(operations.remove_password, password=password)
        return await pipeline.run_each(uploads, processor, archive_name="unlocked.zip")


@app.post("/api/extract-text")
async def extract_text(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("extract text from", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, file))
        return await pipeline.run_each(uploads, operations.extract_text, archive_name="extracted-texts.zip")


@app.post("/api/delete-pages")
async def delete_pages(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
    pages: Optional[str] = Form(None),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("delete pages from", settings) as pipeline:
        if not pages or not pages.strip():
            raise MissingInputError("Please specify pages to delete")
        uploads = await pipeline.receive(_collect(files, file))
        processor = partial(operations.delete_pages, pages=pages)
        return await pipeline.run_each(uploads, processor, archive_name="deleted-pages.zip")


@app.post("/api/reorder-pages")
async def reorder_pages(
    file: Optional[UploadFile] = File(None),
    files: Optional[List[UploadFile]] = File(None),
    order: Optional[str] = Form(None),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("reorder", settings) as pipeline:
        if not order or not order.strip():
            raise MissingInputError("Please specify the new page order")
        uploads = await pipeline.receive(_collect(files, file), single=True, missing_message="Please upload a PDF file")
        processor = partial(operations.reorder_pages, order=order)
        return await pipeline.run_each(uploads, processor, archive_name="reordered.zip")


@app.post("/api/image-to-pdf")
async def image_to_pdf(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[UploadFile] = File(None),
    page_size: PageSize = Form(PageSize.A4, alias="pageSize"),
    orientation: Orientation = Form(Orientation.PORTRAIT),
) -> DeferredCleanupFileResponse:
    async with RequestPipeline("images-to-pdf", settings) as pipeline:
        uploads = await pipeline.receive(_collect(files, file), missing_message="Please upload images")
        processor = partial(operations.images_to_pdf, page_size=page_size, orientation=orientation)
        return await pipeline.run_combined(uploads, processor, check=engine.is_supported_image, kind="image")


@app.post("/api/pdf-to-image")
async def pdf_to_image(
    file: Optional[UploadFile] = File(None),
    files: Optional[List[UploadFile]] = File(None),
    dpi: Optional[int] = Form(None),
    image_format: Optional[ImageFormat] = Form(None, alias="format"),
) -> DeferredCleanupFileResponse:
    raster = settings.rasterize
    dpi = raster.dpi if dpi is None else dpi
    image_format = image_format or ImageFormat(raster.format)

    async with RequestPipeline("rasterize", settings) as pipeline:
        if not 1 <= dpi <= raster.max_dpi:
            raise ValidationError(f"dpi must be between 1 and {raster.max_dpi}")
        uploads = await pipeline.receive(_collect(files, file), single=True, missing_message="Please upload a PDF")
        processor = partial(operations.pdf_to_image, dpi=dpi, image_format=image_format)
        return await pipeline.run_each(uploads, processor, archive_name="images.zip")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
@app.post("/api/admin/login", response_model=AdminLoginResponse)
def admin_login(payload: AdminLoginRequest, state: ServiceState = Depends(get_service_state)) -> AdminLoginResponse:
    token = state.login(payload.password)
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid password")
    return AdminLoginResponse(success=True, token=token)


@app.get("/api/admin/stats", response_model=AdminStats, dependencies=[Depends(require_admin)])
def admin_stats(state: ServiceState = Depends(get_service_state)) -> AdminStats:
    return state.stats()


@app.post("/api/admin/toggle-priority", response_model=TogglePriorityResponse, dependencies=[Depends(require_admin)])
def toggle_priority(
    payload: TogglePriorityRequest,
    state: ServiceState = Depends(get_service_state),
) -> TogglePriorityResponse:
    enabled = state.set_priority_mode(payload.enabled)
    return TogglePriorityResponse(success=True, priority_mode=enabled)


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.server.host, port=int(settings.server.port))


if __name__ == "__main__":
    main()
