"""
Tests for the audit recorder: severity, delivery, queries and retention.
"""
import json
import logging
import threading
from datetime import timedelta

import pytest

from edsupply.core.audit import AuditRecorder, resolve_severity
from edsupply.core.clock import utcnow
from edsupply.core.exceptions import PermissionDeniedError, UnauthenticatedError
from edsupply.models.audit_log import AuditLog
from edsupply.models.enums import AuditSeverity
from edsupply.services.audit_log_service import AuditLogService


class TestSeverity:

    @pytest.mark.parametrize("operation,success,requested,expected", [
        ("checkout_supply", True, None, AuditSeverity.INFO),
        ("checkout_supply", False, None, AuditSeverity.WARNING),
        ("checkout_supply", False, AuditSeverity.CRITICAL, AuditSeverity.CRITICAL),
        ("checkout_supply", True, AuditSeverity.WARNING, AuditSeverity.WARNING),
        ("adjust_inventory", True, None, AuditSeverity.WARNING),
        ("adjust_inventory", False, None, AuditSeverity.CRITICAL),
        ("delete_supply", True, AuditSeverity.INFO, AuditSeverity.WARNING),
        ("view_audit_logs", False, None, AuditSeverity.CRITICAL),
    ])
    def test_resolve(self, operation, success, requested, expected):
        assert resolve_severity(operation, success, requested) == expected


class TestDelivery:

    def test_inline_write_when_worker_not_running(self, audit):
        assert not audit.running
        audit.record("checkout_supply", "nurse-1", {"supply_id": "s-1", "quantity": 2}, True)
        rows = audit.query()
        assert len(rows) == 1
        assert rows[0]["details"] == {"supply_id": "s-1", "quantity": 2}
        assert rows[0]["severity"] == "info"

    def test_worker_drains_queue(self, audit):
        audit.start()
        for i in range(20):
            audit.record("checkin_supply", "nurse-1", {"n": i}, True)
        audit.flush()
        assert len(audit.query(limit=100)) == 20
        audit.stop()
        assert not audit.running

    def test_emits_json_line_on_audit_logger(self, audit, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            audit.record("waste_supply", "nurse-1", {"reason": "torn"}, False, error_message="denied")
        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event_type"] == "inventory.waste_supply"
        assert payload["severity"] == "critical"
        assert payload["error"] == "denied"

    def test_storage_failure_is_swallowed(self, audit, database, monkeypatch):
        def broken_scope():
            raise RuntimeError("audit table gone")

        monkeypatch.setattr(database, "session_scope", broken_scope)
        entry = audit.record("checkout_supply", "nurse-1", {}, True)
        assert entry is not None
        assert audit.dropped == 1

    def test_full_queue_drops_entry(self, database):
        recorder = AuditRecorder(database, queue_size=1)
        release = threading.Event()
        blocker = threading.Thread(target=release.wait, daemon=True)
        blocker.start()
        # Pretend a worker is running but not consuming
        recorder._worker = blocker
        try:
            recorder.record("checkout_supply", "nurse-1", {}, True)
            recorder.record("checkout_supply", "nurse-1", {}, True)
            assert recorder.dropped == 1
        finally:
            recorder._worker = None
            release.set()

    @pytest.mark.parametrize("queued", [0, 1])
    def test_stop_gives_up_on_stuck_worker(self, database, queued):
        recorder = AuditRecorder(database, queue_size=1)
        release = threading.Event()
        blocker = threading.Thread(target=release.wait, daemon=True)
        blocker.start()
        recorder._worker = blocker
        try:
            for _ in range(queued):
                recorder.record("checkout_supply", "nurse-1", {}, True)
            recorder.stop(timeout=0.05)
            assert recorder.running
        finally:
            recorder._worker = None
            release.set()

    def test_details_are_made_json_safe(self, audit):
        from edsupply.models.enums import SupplyLocation

        audit.record("transfer_supply", "nurse-1", {"destination": SupplyLocation.ICU, "at": utcnow()}, True)
        details = audit.query()[0]["details"]
        assert details["destination"] == "icu"
        assert isinstance(details["at"], str)


class TestRetention:

    def _insert(self, database, severity, age_days):
        with database.session_scope() as session:
            session.add(AuditLog(
                operation="checkout_supply", actor_id="nurse-1", details={}, success=True,
                severity=severity, timestamp=utcnow() - timedelta(days=age_days),
            ))

    def test_purge_by_severity_window(self, audit, database):
        self._insert(database, AuditSeverity.INFO, 100)
        self._insert(database, AuditSeverity.INFO, 10)
        self._insert(database, AuditSeverity.WARNING, 100)
        self._insert(database, AuditSeverity.WARNING, 200)
        self._insert(database, AuditSeverity.CRITICAL, 200)
        self._insert(database, AuditSeverity.CRITICAL, 400)

        deleted = audit.purge_expired({
            AuditSeverity.INFO: 90, AuditSeverity.WARNING: 180, AuditSeverity.CRITICAL: 365,
        })

        assert deleted == {"info": 1, "warning": 1, "critical": 1}
        remaining = audit.query(operation="checkout_supply", limit=100)
        assert len(remaining) == 3
        purge_record = audit.query(operation="audit_logs_purged")[0]
        assert purge_record["severity"] == "warning"
        assert purge_record["details"]["deleted"] == deleted


class TestListAuditLogs:

    def test_admin_reads_and_read_is_audited(self, permissions, audit):
        audit.record("checkout_supply", "nurse-1", {}, True)
        service = AuditLogService(permissions, audit)
        rows = service.list_audit_logs("admin-1", operation="checkout_supply")
        assert len(rows) == 1
        view = audit.query(operation="view_audit_logs")[0]
        assert view["actor_id"] == "admin-1"
        assert view["success"] is True

    def test_filters_by_user(self, permissions, audit):
        audit.record("checkout_supply", "nurse-1", {}, True)
        audit.record("checkout_supply", "staff-1", {}, True)
        rows = AuditLogService(permissions, audit).list_audit_logs("admin-1", user_id="staff-1")
        assert [r["actor_id"] for r in rows] == ["staff-1"]

    def test_non_admin_denied(self, permissions, audit):
        service = AuditLogService(permissions, audit)
        with pytest.raises(PermissionDeniedError):
            service.list_audit_logs("manager-1")
        denied = audit.query(operation="view_audit_logs")[0]
        assert denied["success"] is False
        assert denied["severity"] == "critical"

    def test_unauthenticated(self, permissions, audit):
        with pytest.raises(UnauthenticatedError):
            AuditLogService(permissions, audit).list_audit_logs(None)
