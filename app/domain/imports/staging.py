"""
Build staging records from parsed spreadsheet rows.

Staging is a pure transformation: the same (source, upload, org, rows)
input always produces the same records, with no clock reads, id generation
or I/O. Persisting the result is the upload workflow's job.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple
import copy
import logging

from app.domain.imports.canonical_schemas import (
    CORE_FIELDS,
    IDENTITY_FIELD,
    ImportSource,
    get_canonical_schema,
)
from app.domain.imports.mapper import ColumnBinding, map_row, resolve_column_bindings

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ERROR = "error"


@dataclass
class StagingRecord:
    upload_id: str
    org_id: str
    record_type: str
    row_index: int
    raw_data: Dict[str, Any]
    full_name: Optional[Any] = None
    email: Optional[Any] = None
    phone: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = STATUS_PENDING
    validation_errors: Optional[Dict[str, List[str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StagingSummary:
    total_rows: int
    pending_rows: int
    error_rows: int


def build_staging_records(
    source: ImportSource,
    upload_id: str,
    org_id: str,
    rows: Sequence[Dict[str, Any]],
) -> List[StagingRecord]:
    """
    Map every row of the selected sheet onto the source's canonical schema.

    ``row_index`` follows the input order starting at 0 and ``raw_data`` is a
    deep copy of the row exactly as parsed. A row whose identity field does
    not resolve is staged with status "error" and a ``missing`` entry; no
    other field is validated here.
    """
    source = ImportSource(source)
    schema = get_canonical_schema(source)
    record_type = source.record_type

    # Rows from one sheet nearly always share a column set
    binding_cache: Dict[Tuple[str, ...], Dict[str, ColumnBinding]] = {}

    records: List[StagingRecord] = []
    for row_index, row in enumerate(rows):
        columns = tuple(row.keys())
        bindings = binding_cache.get(columns)
        if bindings is None:
            bindings = resolve_column_bindings(schema, columns)
            binding_cache[columns] = bindings

        mapped = map_row(schema, row, CORE_FIELDS, bindings=bindings)

        record = StagingRecord(
            upload_id=upload_id,
            org_id=org_id,
            record_type=record_type,
            row_index=row_index,
            raw_data=copy.deepcopy(dict(row)),
            full_name=mapped.core.get("full_name"),
            email=mapped.core.get("email"),
            phone=mapped.core.get("phone"),
            metadata=mapped.metadata,
        )
        if not mapped.resolved(IDENTITY_FIELD):
            record.status = STATUS_ERROR
            record.validation_errors = {"missing": [IDENTITY_FIELD]}
        records.append(record)

    return records


def summarize_staging(records: Sequence[StagingRecord]) -> StagingSummary:
    error_rows = sum(1 for record in records if record.status == STATUS_ERROR)
    return StagingSummary(
        total_rows=len(records),
        pending_rows=len(records) - error_rows,
        error_rows=error_rows,
    )
