"""
Tally migration REST API.

Endpoints:
  GET  /api/migration/health
  POST /api/migration/upload
  GET  /api/migration/batches
  GET  /api/migration/batches/{id}
  GET  /api/migration/batches/{id}/parsed
  GET  /api/migration/batches/{id}/validation
  POST /api/migration/batches/{id}/mappings
  POST /api/migration/batches/{id}/import
  POST /api/migration/batches/{id}/cancel
  GET  /api/migration/batches/{id}/progress
  GET  /api/migration/batches/{id}/result
  GET  /api/migration/batches/{id}/logs
  GET  /api/migration/batches/{id}/rollback/preview
  POST /api/migration/batches/{id}/rollback
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile, status
from loguru import logger
from sqlmodel import Session, select

from tally_migration.core.config import settings
from tally_migration.core.database import get_session
from tally_migration.core.errors import MigrationError
from tally_migration.migration.cache import ParsedDocumentCache
from tally_migration.migration.orchestrator import ImportOrchestrator
from tally_migration.models import MigrationBatch
from tally_migration.schemas.responses import (
    BatchListResponse,
    BatchRead,
    HealthResponse,
    ImportProgress,
    ImportRequest,
    ImportResult,
    LogListResponse,
    MappingConfig,
    RollbackPreview,
    RollbackRequest,
    RollbackResult,
    UploadResponse,
    ValidationResult,
)
from tally_migration.schemas.tally import ParsedDocument

router = APIRouter(prefix="/api/migration", tags=["migration"])

_orchestrator = ImportOrchestrator(ParsedDocumentCache())


def get_orchestrator() -> ImportOrchestrator:
    return _orchestrator


def _http_error(exc: MigrationError) -> HTTPException:
    if exc.code == "not_found":
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if exc.code in ("validation", "cancelled"):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    logger.error(f"Migration request failed: {exc.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal error while processing the migration request",
    )


# ── Health ────────────────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
def health(
    session: Session = Depends(get_session),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        session.exec(select(MigrationBatch).limit(1))
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {e}"
    return HealthResponse(status="ok", db=db_status, cached_documents=len(orchestrator.cache))


# ── Upload / preview ──────────────────────────────────────────────────────────


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload(
    file: UploadFile = File(...),
    company_id: int = Query(..., ge=1),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Upload a Tally XML or JSON export, parse it and run validation."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.MAX_UPLOAD_MB} MB upload limit",
        )
    try:
        return orchestrator.upload_and_parse(company_id, file.filename or "upload.xml", content)
    except MigrationError as exc:
        raise _http_error(exc)


@router.get("/batches", response_model=BatchListResponse)
def list_batches(
    company_id: int = Query(..., ge=1),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_batches(company_id, page, page_size, status_filter)


@router.get("/batches/{batch_id}", response_model=BatchRead)
def get_batch(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_batch_detail(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


@router.get("/batches/{batch_id}/parsed", response_model=ParsedDocument)
def get_parsed(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_parsed_data(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


@router.get("/batches/{batch_id}/validation", response_model=ValidationResult)
def get_validation(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.validate(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


# ── Mapping / import ──────────────────────────────────────────────────────────


@router.post("/batches/{batch_id}/mappings")
def configure_mappings(
    batch_id: int,
    config: MappingConfig,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        saved = orchestrator.configure_mappings(batch_id, config)
    except MigrationError as exc:
        raise _http_error(exc)
    return {"batch_id": batch_id, "saved": saved}


@router.post("/batches/{batch_id}/import", response_model=ImportProgress, status_code=status.HTTP_202_ACCEPTED)
def start_import(
    batch_id: int,
    background_tasks: BackgroundTasks,
    request: Optional[ImportRequest] = None,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """Validate preconditions now, run the import in the background."""
    request = request or ImportRequest()
    try:
        orchestrator.prepare_import(batch_id, request)
    except MigrationError as exc:
        raise _http_error(exc)
    background_tasks.add_task(orchestrator.run_import, batch_id, request)
    return orchestrator.get_progress(batch_id)


@router.post("/batches/{batch_id}/cancel")
def cancel_import(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.cancel_import(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)
    return {"batch_id": batch_id, "cancel_requested": True}


@router.get("/batches/{batch_id}/progress", response_model=ImportProgress)
def get_progress(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_progress(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


@router.get("/batches/{batch_id}/result", response_model=ImportResult)
def get_result(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_result(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


@router.get("/batches/{batch_id}/logs", response_model=LogListResponse)
def get_logs(
    batch_id: int,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    record_type: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.get_logs(batch_id, page, page_size, status_filter, record_type)
    except MigrationError as exc:
        raise _http_error(exc)


# ── Rollback ──────────────────────────────────────────────────────────────────


@router.get("/batches/{batch_id}/rollback/preview", response_model=RollbackPreview)
def preview_rollback(batch_id: int, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.preview_rollback(batch_id)
    except MigrationError as exc:
        raise _http_error(exc)


@router.post("/batches/{batch_id}/rollback", response_model=RollbackResult)
def rollback(
    batch_id: int,
    request: Optional[RollbackRequest] = None,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.rollback(batch_id, request or RollbackRequest())
    except MigrationError as exc:
        raise _http_error(exc)
