"""
PDF Pro Backend - REST API for everyday PDF operations

This package provides a FastAPI-based web service for manipulating PDF
documents and images. It enables:

- Merging, splitting, compressing and rotating PDFs
- Deleting and reordering pages
- Text and image watermarks
- Password protection and removal
- Text extraction, PDF-to-image and image-to-PDF conversion

The backend does no document processing of its own: pypdf, PyMuPDF and
Pillow do the work. The service validates uploads, turns form fields into
engine calls, bundles multi-file results into zip archives and makes sure
every temporary file is deleted.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - pipeline: Per-request lifecycle (receive, validate, process, assemble, deliver)
    - page_selector: Page and range specification parsing
    - assembler: Single-file versus zip archive responses
    - cleanup: Temporary file tracking and deferred deletion
    - engine: Adapter over the document and image libraries
    - operations: One processor per document operation
    - configuration: Config loading and merging logic
    - service_state: Request counter, priority mode and admin sessions

Usage:
    Run the API server with:
        uvicorn pdfpro_backend.main:app --reload --host 0.0.0.0 --port 3001

    Or use the console script:
        pdfpro-backend
"""
