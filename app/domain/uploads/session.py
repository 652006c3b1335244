"""
Upload session state machine: select -> preview -> staging.

A session holds at most one file's working state. Every transition runs
under the session's ``OperationGuard``, so a second call while one is in
flight (a double confirm, a file pick during staging) is rejected instead of
racing the first.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import uuid

from app.core.config import settings
from app.domain.imports.canonical_schemas import ImportSource, get_canonical_schema
from app.domain.imports.errors import FileTooLargeError, ParseError
from app.domain.imports.mapper import resolve_column_bindings
from app.domain.imports.processors.spreadsheet_processor import ParsedSheet, parse_spreadsheet
from app.domain.uploads.workflow import PersistenceError, StageResult, run_stage_workflow
from app.utils.locks import OperationGuard
from app.utils.serialization import _make_json_safe

logger = logging.getLogger(__name__)


class UploadStep(str, Enum):
    SELECT = "select"
    PREVIEW = "preview"
    STAGING = "staging"


class InvalidTransitionError(RuntimeError):
    """A transition was requested from a step that does not allow it."""

    def __init__(self, action: str, step: UploadStep):
        self.action = action
        self.step = step
        super().__init__(f"Cannot {action} while the upload is in the '{step.value}' step")


class UnknownSheetError(ValueError):
    pass


@dataclass
class SelectedFile:
    name: str
    content: bytes = field(repr=False)
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadState:
    step: UploadStep = UploadStep.SELECT
    file: Optional[SelectedFile] = None
    sheets: List[ParsedSheet] = field(default_factory=list)
    selected_sheet: Optional[str] = None
    import_source: ImportSource = ImportSource.DRIVERS
    error: Optional[str] = None
    upload_id: Optional[str] = None


class UploadSession:
    """One user's import in progress."""

    def __init__(self, org_id: str, user_id: Optional[str] = None, session_id: Optional[str] = None):
        self.id = session_id or str(uuid.uuid4())
        self.org_id = org_id
        self.user_id = user_id
        self.state = UploadState()
        self._guard = OperationGuard(f"upload session {self.id}")

    @property
    def is_processing(self) -> bool:
        return self._guard.busy

    @property
    def step(self) -> UploadStep:
        return self.state.step

    def _require_step(self, action: str, *steps: UploadStep) -> None:
        if self.state.step not in steps:
            raise InvalidTransitionError(action, self.state.step)

    def current_sheet(self) -> Optional[ParsedSheet]:
        for sheet in self.state.sheets:
            if sheet.name == self.state.selected_sheet:
                return sheet
        return None

    def select_file(self, file_name: str, content: bytes, content_type: Optional[str] = None) -> List[ParsedSheet]:
        """
        Parse a picked file and move to preview.

        On a parse failure the session stays in select with the error set.
        """
        with self._guard.hold("select_file"):
            self._require_step("select a file", UploadStep.SELECT)
            max_bytes = settings.upload_max_file_size_mb * 1024 * 1024
            try:
                if len(content) > max_bytes:
                    raise FileTooLargeError(file_name, len(content), max_bytes)
                sheets = parse_spreadsheet(content, file_name)
            except ParseError as e:
                logger.info("Rejected %s for session %s: %s", file_name, self.id, e.message)
                self.state.error = e.message
                raise

            self.state.file = SelectedFile(file_name, content, content_type)
            self.state.sheets = sheets
            self.state.selected_sheet = sheets[0].name
            self.state.error = None
            self.state.step = UploadStep.PREVIEW
            return sheets

    def set_import_source(self, source: ImportSource) -> None:
        with self._guard.hold("set_import_source"):
            self._require_step("change the import source", UploadStep.PREVIEW)
            self.state.import_source = ImportSource(source)

    def select_sheet(self, sheet_name: str) -> None:
        with self._guard.hold("select_sheet"):
            self._require_step("select a sheet", UploadStep.PREVIEW)
            if not any(sheet.name == sheet_name for sheet in self.state.sheets):
                raise UnknownSheetError(f"Sheet '{sheet_name}' not found in {self.state.file.name}")
            self.state.selected_sheet = sheet_name

    def cancel(self) -> None:
        """Abandon the previewed file and go back to select."""
        with self._guard.hold("cancel"):
            self._require_step("cancel", UploadStep.PREVIEW)
            self.state = UploadState()

    def reset(self) -> None:
        with self._guard.hold("reset"):
            self.state = UploadState()

    def clear_error(self) -> None:
        with self._guard.hold("clear_error"):
            self.state.error = None

    def confirm(self) -> StageResult:
        """
        Stage the selected sheet.

        Success moves the session to its terminal staging step with the new
        upload id. A PersistenceError leaves it in preview with the error set.
        """
        with self._guard.hold("confirm"):
            self._require_step("confirm", UploadStep.PREVIEW)
            sheet = self.current_sheet()
            selected = self.state.file
            try:
                result = run_stage_workflow(
                    org_id=self.org_id,
                    file_name=selected.name,
                    file_content=selected.content,
                    sheet=sheet,
                    source=self.state.import_source,
                    uploaded_by=self.user_id,
                    content_type=selected.content_type,
                )
            except PersistenceError as e:
                self.state.error = str(e)
                raise

            self.state.error = None
            self.state.upload_id = result.upload_id
            self.state.step = UploadStep.STAGING
            return result

    def sheet_previews(self, row_limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """First rows of every sheet plus the column each canonical field would read."""
        row_limit = row_limit if row_limit is not None else settings.preview_row_limit
        schema = get_canonical_schema(self.state.import_source)
        previews = []
        for sheet in self.state.sheets:
            bindings = resolve_column_bindings(schema, sheet.headers)
            previews.append({
                "name": sheet.name,
                "headers": sheet.headers,
                "total_rows": sheet.total_rows,
                "header_row_index": sheet.header_row_index,
                "preview_rows": _make_json_safe(sheet.rows[:row_limit]),
                "column_bindings": {
                    target: {
                        "source_column": binding.source_column,
                        "alias": binding.alias,
                        "match_type": binding.match_type,
                    }
                    for target, binding in bindings.items()
                },
            })
        return previews

    def to_dict(self) -> Dict[str, Any]:
        selected = self.state.file
        return {
            "id": self.id,
            "org_id": self.org_id,
            "step": self.state.step.value,
            "file": (
                {"name": selected.name, "size": selected.size, "content_type": selected.content_type}
                if selected else None
            ),
            "sheets": self.sheet_previews() if self.state.sheets else [],
            "selected_sheet": self.state.selected_sheet,
            "import_source": self.state.import_source.value,
            "is_processing": self.is_processing,
            "error": self.state.error,
            "upload_id": self.state.upload_id,
        }
