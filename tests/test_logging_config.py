import logging
from unittest.mock import patch

from app.core.logging_config import UploadContextFilter, upload_log_context
from app.domain.uploads.session import UploadSession
from tests.utils.workbooks import DRIVERS_ROWS, build_xlsx


def _record(message="staging"):
    return logging.LogRecord("app.test", logging.INFO, __file__, 1, message, None, None)


def test_filter_stamps_placeholders_outside_any_context():
    record = _record()

    assert UploadContextFilter().filter(record) is True
    assert (record.org_id, record.upload_id) == ("-", "-")


def test_nested_contexts_restore_outer_values():
    log_filter = UploadContextFilter()

    with upload_log_context(org_id="org-1"):
        with upload_log_context(upload_id="u1"):
            inner = _record()
            log_filter.filter(inner)
        outer = _record()
        log_filter.filter(outer)

    assert (inner.org_id, inner.upload_id) == ("org-1", "u1")
    assert (outer.org_id, outer.upload_id) == ("org-1", "-")


def test_stage_workflow_logs_carry_the_upload_id(fake_s3, caplog):
    caplog.set_level(logging.INFO, logger="app.domain.uploads.workflow")
    seen = []
    log_filter = UploadContextFilter()

    def capture(self, record):
        log_filter.filter(record)
        seen.append((record.name, record.org_id, record.upload_id))

    session = UploadSession(org_id="org-1")
    session.select_file("drivers.xlsx", build_xlsx({"Drivers": DRIVERS_ROWS}))
    with patch.object(logging.Logger, "handle", capture):
        result = session.confirm()

    workflow_lines = [entry for entry in seen if entry[0] == "app.domain.uploads.workflow"]
    assert workflow_lines
    assert all(entry[1:] == ("org-1", result.upload_id) for entry in workflow_lines)
