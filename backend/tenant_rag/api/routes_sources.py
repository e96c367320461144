"""Knowledge source routes: upload files, add pages, list and delete."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile

from tenant_rag.api.dependencies import get_ingest_pipeline, get_source_registry
from tenant_rag.ingest.pipeline import IngestPipeline
from tenant_rag.ingest.registry import SourceRegistry
from tenant_rag.ingest.types import IngestResult
from tenant_rag.models.dto import DeleteResponse, IngestResponse, SourceResponse, WebsiteSourceRequest

router = APIRouter()


@router.post("/sources/file", response_model=IngestResponse, status_code=201, summary="Upload and index a file")
def upload_file(
    tenant_id: str,
    file: UploadFile = File(...),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> IngestResponse:
    # One extra byte is enough to tell that the upload is over the limit.
    data = file.file.read(pipeline.settings.max_upload_bytes + 1)
    result = pipeline.ingest_file(tenant_id, file.filename or "", data, file.content_type)
    return _to_response(result)


@router.post("/sources/website", response_model=IngestResponse, status_code=201, summary="Fetch and index one page")
def add_website(
    tenant_id: str,
    request: WebsiteSourceRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> IngestResponse:
    return _to_response(pipeline.ingest_website(tenant_id, request.url))


@router.get("/sources", response_model=list[SourceResponse], summary="List the tenant's sources")
def list_sources(tenant_id: str, registry: SourceRegistry = Depends(get_source_registry)) -> list[SourceResponse]:
    return [SourceResponse.from_source(source) for source in registry.list_sources(tenant_id)]


@router.delete("/sources/{source_id}", response_model=DeleteResponse, summary="Remove a source and its vectors")
def delete_source(
    tenant_id: str,
    source_id: str,
    registry: SourceRegistry = Depends(get_source_registry),
) -> DeleteResponse:
    registry.delete(tenant_id, source_id)
    return DeleteResponse(deleted=source_id)


def _to_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        source=SourceResponse.from_source(result.source),
        chunk_count=result.chunk_count,
        tokens_charged=result.tokens_charged,
        balance=result.balance,
    )


__all__ = ["router"]
