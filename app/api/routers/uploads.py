"""
Read endpoints for staged uploads and the import sources they map onto.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import get_org_id
from app.api.schemas.shared import (
    CanonicalFieldInfo,
    ImportSourceInfo,
    ImportSourcesResponse,
    StagingRecordResponse,
    StagingRecordsListResponse,
    UploadRecordResponse,
)
from app.domain.imports.canonical_schemas import (
    CANONICAL_SCHEMAS,
    CORE_FIELDS,
    IDENTITY_FIELD,
)
from app.domain.uploads.staging_records import count_staging_records, get_staging_records
from app.domain.uploads.uploaded_files import get_upload_record_by_id

router = APIRouter(tags=["uploads"])


@router.get("/import-sources", response_model=ImportSourcesResponse)
def list_import_sources():
    """Canonical schemas per import source, with the header aliases each field accepts."""
    sources = []
    for source, schema in CANONICAL_SCHEMAS.items():
        fields = [
            CanonicalFieldInfo(
                name=name,
                aliases=list(aliases),
                is_core=name in CORE_FIELDS,
                is_identity=name == IDENTITY_FIELD,
            )
            for name, aliases in schema.items()
        ]
        sources.append(ImportSourceInfo(source=source, record_type=source.record_type, fields=fields))
    return ImportSourcesResponse(sources=sources)


@router.get("/uploads/{upload_id}", response_model=UploadRecordResponse)
def get_upload(upload_id: str, org_id: str = Depends(get_org_id)):
    record = get_upload_record_by_id(upload_id, org_id=org_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Upload {upload_id} not found")
    return UploadRecordResponse(**record)


@router.get("/uploads/{upload_id}/staging-records", response_model=StagingRecordsListResponse)
def list_staging_records(
    upload_id: str,
    status: str = Query(None, pattern="^(pending|error)$"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    org_id: str = Depends(get_org_id),
):
    """
    Staged rows of an upload in sheet order.

    Parameters:
    - status: only 'pending' or only 'error' rows
    - limit: maximum number of rows to return (default: 100)
    - offset: number of rows to skip for pagination (default: 0)
    """
    if get_upload_record_by_id(upload_id, org_id=org_id) is None:
        raise HTTPException(status_code=404, detail=f"Upload {upload_id} not found")

    records = get_staging_records(upload_id, org_id=org_id, status=status, limit=limit, offset=offset)
    return StagingRecordsListResponse(
        upload_id=upload_id,
        records=[StagingRecordResponse(**record) for record in records],
        total_count=count_staging_records(upload_id, status=status),
        limit=limit,
        offset=offset,
    )
