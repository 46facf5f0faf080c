"""Tests for SecurityEventStore and CSV export."""

from __future__ import annotations

import csv
import io
import time
from unittest.mock import patch

import pytest

from webguard.detection.models import EventType, RequestContext, Severity
from webguard.storage.event_store import CSV_COLUMNS, SecurityEventStore, events_to_csv


class TestRecord:
    def setup_method(self):
        self.store = SecurityEventStore()

    def test_record_assigns_id_and_defaults(self):
        event = self.store.record(EventType.XSS_ATTEMPT, {"ip": "203.0.113.5"})
        assert event.id
        assert event.type == "xss_attempt"
        assert event.severity == Severity.MEDIUM
        assert event.description == "xss_attempt"
        assert event.source_ip == "203.0.113.5"
        assert self.store.get(event.id) is event
        assert len(self.store) == 1

    def test_severity_and_description_promoted(self):
        event = self.store.record("sql_injection", {
            "severity": "critical", "description": "bad query", "param": "id",
        })
        assert event.severity == Severity.CRITICAL
        assert event.description == "bad query"
        assert event.details == {"param": "id"}

    def test_ids_are_unique(self):
        ids = {self.store.record("failed_login").id for _ in range(50)}
        assert len(ids) == 50

    def test_ip_resolution_order(self):
        ctx = RequestContext(ip="198.51.100.1")
        assert self.store.record("x", {"ip": "1.1.1.1"}, ctx).source_ip == "198.51.100.1"
        assert self.store.record("x", {}, ctx, source_ip="2.2.2.2").source_ip == "2.2.2.2"
        assert self.store.record("x").source_ip is None

    def test_event_to_dict(self):
        ctx = RequestContext(ip="198.51.100.1", method="GET", url="/a", user_agent="ua")
        data = self.store.record("path_traversal", {}, ctx).to_dict()
        assert data["type"] == "path_traversal"
        assert data["severity"] == "high"
        assert data["time"].endswith("Z")
        assert data["request_context"]["method"] == "GET"


class TestQuery:
    def setup_method(self):
        self.store = SecurityEventStore()
        base = 1_000_000.0
        with patch("webguard.storage.event_store.time") as mock_time:
            for i, (etype, ip, sev) in enumerate([
                ("sql_injection", "1.1.1.1", "high"),
                ("xss_attempt", "1.1.1.1", "medium"),
                ("sql_injection", "2.2.2.2", "critical"),
                ("failed_login", "3.3.3.3", None),
            ]):
                mock_time.time.return_value = base + i
                data = {"severity": sev} if sev else {}
                self.store.record(etype, data, source_ip=ip)
        self.base = base

    def _query(self, **kwargs):
        with patch("webguard.storage.event_store.time") as mock_time:
            mock_time.time.return_value = self.base + 10
            return self.store.query(**kwargs)

    def test_newest_first(self):
        page = self._query()
        assert [e.source_ip for e in page.events] == ["3.3.3.3", "2.2.2.2", "1.1.1.1", "1.1.1.1"]
        assert page.total == 4

    def test_filters(self):
        assert self._query(event_type="sql_injection").total == 2
        assert self._query(ip="1.1.1.1").total == 2
        assert self._query(severity="critical").total == 1
        assert self._query(event_type="sql_injection", ip="1.1.1.1").total == 1

    def test_pagination_total_before_slice(self):
        page = self._query(limit=2, offset=1)
        assert page.total == 4
        assert [e.type for e in page.events] == ["sql_injection", "xss_attempt"]
        assert page.to_dict()["limit"] == 2

    def test_window_excludes_old(self):
        page = self._query(window_seconds=8.5)
        assert page.total == 2


class TestCleanup:
    def test_cleanup_removes_only_old_events(self):
        store = SecurityEventStore()
        now = time.time()
        with patch("webguard.storage.event_store.time") as mock_time:
            mock_time.time.return_value = now - 1000
            store.record("failed_login")
            mock_time.time.return_value = now
            fresh = store.record("failed_login")

        assert store.cleanup(retention_seconds=500) == 1
        assert [e.id for e in store.snapshot()] == [fresh.id]

    def test_cleanup_empty_store(self):
        assert SecurityEventStore().cleanup(0) == 0


class TestCSV:
    def test_empty_is_empty_string(self):
        assert events_to_csv([]) == ""

    def test_columns_and_quoting(self):
        store = SecurityEventStore()
        ctx = RequestContext(ip="1.2.3.4", method="POST", url="/login?a=1,2", user_agent='x "y"')
        store.record("sql_injection", {"description": "comma, inside"}, ctx)

        text = events_to_csv(store.snapshot())
        rows = list(csv.reader(io.StringIO(text)))
        assert tuple(rows[0]) == CSV_COLUMNS
        assert rows[1][1:] == ["sql_injection", "1.2.3.4", "POST", "/login?a=1,2", 'x "y"', "comma, inside"]
        assert text.splitlines()[0].startswith('"timestamp"')

    @pytest.mark.parametrize("count", [1, 3])
    def test_row_count(self, count):
        store = SecurityEventStore()
        for _ in range(count):
            store.record("failed_login", source_ip="9.9.9.9")
        rows = list(csv.reader(io.StringIO(events_to_csv(store.snapshot()))))
        assert len(rows) == count + 1
