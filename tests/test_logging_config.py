"""Log formatting — case context in JSON lines and in the readable tail."""

import json
import logging

import pytest

from caseflow.middleware.logging_config import CaseLogFormatter, RequestIdFilter, record_context

pytestmark = pytest.mark.unit


def _record(msg="Plan generated", **extra):
    record = logging.LogRecord("caseflow.services.workflow_service", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRecordContext:
    def test_drops_missing_and_none_fields(self):
        record = _record(tenant_id=3, case_id="c-1", step_key=None)
        assert record_context(record) == {"tenant_id": 3, "case_id": "c-1"}


class TestCaseLogFormatter:
    def test_json_lifts_context_to_top_level(self):
        record = _record(tenant_id=3, case_id="c-1", event_type="CasePlanGenerated")
        entry = json.loads(CaseLogFormatter(as_json=True).format(record))
        assert entry["message"] == "Plan generated"
        assert entry["level"] == "INFO"
        assert entry["case_id"] == "c-1"
        assert entry["event_type"] == "CasePlanGenerated"
        assert "step_key" not in entry

    def test_readable_line_has_context_tail_and_duration(self):
        record = _record(tenant_id=3, case_id="c-1", step_key="validate-will", duration_ms=41.6)
        line = CaseLogFormatter().format(record)
        assert line.endswith("Plan generated  [tenant=3 case=c-1 step_key=validate-will] (42ms)")

    def test_readable_line_without_context(self):
        line = CaseLogFormatter().format(_record())
        assert line.endswith("caseflow.services.workflow_service: Plan generated")


class TestRequestIdFilter:
    def test_outside_a_request_leaves_record_alone(self):
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert getattr(record, "request_id", None) is None

    def test_stamps_request_id_from_flask_g(self, app):
        from flask import g

        with app.test_request_context("/api/v1/health"):
            g.request_id = "abc123"
            record = _record()
            RequestIdFilter().filter(record)
        assert record.request_id == "abc123"

    def test_explicit_request_id_wins(self, app):
        from flask import g

        with app.test_request_context("/api/v1/health"):
            g.request_id = "abc123"
            record = _record(request_id="given")
            RequestIdFilter().filter(record)
        assert record.request_id == "given"
