from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Literal, Union

from pydantic import BaseModel, Field

from app.domain.imports.canonical_schemas import ImportSource


class ColumnBindingInfo(BaseModel):
    """Which source column a canonical field reads from."""
    source_column: str
    alias: str
    match_type: Literal["exact", "partial"]


class SheetPreview(BaseModel):
    name: str
    headers: List[str]
    total_rows: int
    header_row_index: int = 0
    preview_rows: List[Dict[str, Any]] = Field(default_factory=list)
    column_bindings: Dict[str, ColumnBindingInfo] = Field(default_factory=dict)


class SelectedFileInfo(BaseModel):
    name: str
    size: int
    content_type: Optional[str] = None


class UploadSessionResponse(BaseModel):
    """Current state of an upload session."""
    id: str
    org_id: str
    step: Literal["select", "preview", "staging"]
    file: Optional[SelectedFileInfo] = None
    sheets: List[SheetPreview] = Field(default_factory=list)
    selected_sheet: Optional[str] = None
    import_source: ImportSource = ImportSource.DRIVERS
    is_processing: bool = False
    error: Optional[str] = None
    upload_id: Optional[str] = None


class UpdateUploadSessionRequest(BaseModel):
    """Preview-step choices; omitted fields are left unchanged."""
    import_source: Optional[ImportSource] = None
    selected_sheet: Optional[str] = None


class StageUploadResponse(BaseModel):
    success: bool = True
    upload_id: str
    file_path: str
    total_rows: int
    pending_rows: int
    error_rows: int
    notes: str


class UploadRecordResponse(BaseModel):
    id: str
    org_id: str
    source: str
    file_path: str
    original_filename: str
    file_size: int = 0
    mime_type: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    committed_by: Optional[str] = None


class PersistedHistoryEntry(BaseModel):
    kind: Literal["persisted"] = "persisted"
    id: str
    source: str
    file_path: str
    original_filename: str
    file_size: int = 0
    mime_type: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    committed_by: Optional[str] = None
    exists_in_storage: Optional[bool] = None


class StorageOnlyHistoryEntry(BaseModel):
    kind: Literal["storage_only"] = "storage_only"
    id: str
    source: Optional[str] = None
    file_path: str
    original_filename: str
    file_size: int = 0
    status: Literal["unlinked"] = "unlinked"
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    notes: str
    exists_in_storage: bool = True


HistoryEntryResponse = Annotated[
    Union[PersistedHistoryEntry, StorageOnlyHistoryEntry], Field(discriminator="kind")
]


class UploadHistoryResponse(BaseModel):
    success: bool = True
    entries: List[HistoryEntryResponse] = Field(default_factory=list)
    page: int
    page_size: int
    total_entries: int
    total_pages: int
    storage_warning: Optional[str] = None


class DeleteUploadResponse(BaseModel):
    success: bool = True
    id: str
    file_path: Optional[str] = None
    deleted_record: bool
    deleted_blob: bool
    message: str


class StagingRecordResponse(BaseModel):
    id: int
    upload_id: str
    org_id: str
    record_type: str
    row_index: int
    raw_data: Dict[str, Any]
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "error"]
    validation_errors: Optional[Dict[str, List[str]]] = None
    created_at: Optional[datetime] = None


class StagingRecordsListResponse(BaseModel):
    success: bool = True
    upload_id: str
    records: List[StagingRecordResponse]
    total_count: int
    limit: int
    offset: int


class CanonicalFieldInfo(BaseModel):
    name: str
    aliases: List[str]
    is_core: bool = False
    is_identity: bool = False


class ImportSourceInfo(BaseModel):
    source: ImportSource
    record_type: str
    fields: List[CanonicalFieldInfo]


class ImportSourcesResponse(BaseModel):
    sources: List[ImportSourceInfo]
