"""
Unit tests for storage layer.

Tests schema creation, usage ingest, workflow items and the audit log.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from cloud_cost_advisor.storage.db import get_connection
from cloud_cost_advisor.storage.models import (
    AuditLogEntry,
    AuditStatus,
    ItemKind,
    UsageRecord,
    WorkflowItem,
    WorkflowStatus,
)
from cloud_cost_advisor.storage.repository import WorkflowRepository, initialize_schema


def _item(item_id="item-1", key="rightsizing:aws:i-1", status=WorkflowStatus.PENDING_APPROVAL):
    return WorkflowItem(
        id=item_id,
        kind=ItemKind.RECOMMENDATION,
        key=key,
        status=status,
        payload={"variant": "rightsizing", "estimated_savings": 12.5},
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """All tables are created and creation is repeatable."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
                tables = {row[0] for row in cursor.fetchall()}
            finally:
                conn.close()

            assert {"usage_record", "workflow_item", "status_transition", "audit_log"} <= tables

    def test_foreign_keys_enabled(self, repository):
        conn = get_connection(repository.db_path)
        try:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        finally:
            conn.close()


class TestUsageRecords:
    """Test usage record ingest and retrieval."""

    def test_insert_and_fetch_in_timestamp_order(self, repository):
        records = [
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 2), 1.5, 0.3),
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 0), 1.0, None),
            UsageRecord("vm-1", "gcp", "compute", datetime(2024, 1, 1, 1), 2.0, 0.9),
        ]
        assert repository.insert_usage_records(records) == 3

        fetched = repository.fetch_usage_records()
        assert [r.timestamp.hour for r in fetched] == [0, 1, 2]
        assert fetched[0].utilization is None
        assert fetched[2] == records[0]

    def test_filters(self, repository):
        repository.insert_usage_records([
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 0), 1.0, 0.5),
            UsageRecord("db-1", "aws", "rds", datetime(2024, 1, 2, 0), 1.0, 0.5),
            UsageRecord("vm-1", "gcp", "compute", datetime(2024, 1, 3, 0), 1.0, 0.5),
        ])

        assert [r.resource_id for r in repository.fetch_usage_records(provider="aws")] == ["i-1", "db-1"]
        assert [r.resource_id for r in repository.fetch_usage_records(service="rds")] == ["db-1"]
        window = repository.fetch_usage_records(
            start=datetime(2024, 1, 2), end=datetime(2024, 1, 3),
        )
        assert [r.resource_id for r in window] == ["db-1", "vm-1"]

    def test_empty_insert(self, repository):
        assert repository.insert_usage_records([]) == 0

    def test_aware_timestamps_stored_as_naive_utc(self, repository):
        plus_two = timezone(timedelta(hours=2))
        repository.insert_usage_records([
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 3, tzinfo=plus_two), 1.0, 0.5),
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 0), 1.0, 0.5),
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1, 2, tzinfo=timezone.utc), 1.0, 0.5),
        ])

        fetched = repository.fetch_usage_records()
        assert [r.timestamp for r in fetched] == [
            datetime(2024, 1, 1, 0),
            datetime(2024, 1, 1, 1),
            datetime(2024, 1, 1, 2),
        ]
        window = repository.fetch_usage_records(
            start=datetime(2024, 1, 1, 1, tzinfo=timezone.utc),
        )
        assert len(window) == 2

    def test_utilization_must_be_a_fraction(self):
        with pytest.raises(ValueError, match="between 0 and 1"):
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1), 1.0, 45.0)
        with pytest.raises(ValueError, match="between 0 and 1"):
            UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1), 1.0, -0.1)
        assert UsageRecord("i-1", "aws", "ec2", datetime(2024, 1, 1), 1.0, 1.0).utilization == 1.0


class TestWorkflowItems:
    """Test workflow item persistence."""

    def test_add_and_get(self, repository):
        assert repository.add_item(_item(), actor="system")

        item = repository.get_item("item-1")
        assert item.status == WorkflowStatus.PENDING_APPROVAL
        assert item.payload == {"variant": "rightsizing", "estimated_savings": 12.5}
        assert item.created_at is not None
        assert repository.get_item("missing") is None

    def test_open_duplicate_refused(self, repository):
        assert repository.add_item(_item("item-1"), actor="system")
        assert not repository.add_item(_item("item-2"), actor="system")
        assert [i.id for i in repository.list_items()] == ["item-1"]

    def test_duplicate_allowed_after_terminal(self, repository):
        repository.add_item(_item("item-1"), actor="system")
        repository.update_status(
            "item-1", WorkflowStatus.PENDING_APPROVAL, WorkflowStatus.REJECTED, "alice",
        )
        assert repository.add_item(_item("item-2"), actor="system")

    def test_compare_and_set(self, repository):
        repository.add_item(_item(), actor="system")

        assert not repository.update_status(
            "item-1", WorkflowStatus.APPROVED, WorkflowStatus.APPLIED, "orchestrator",
        )
        assert repository.update_status(
            "item-1",
            WorkflowStatus.PENDING_APPROVAL,
            WorkflowStatus.REJECTED,
            "alice",
            reason="duplicate",
            record_decision=True,
        )

        item = repository.get_item("item-1")
        assert item.status == WorkflowStatus.REJECTED
        assert item.decided_by == "alice"
        assert item.reason == "duplicate"

        transitions = repository.list_transitions("item-1")
        assert [t.to_status for t in transitions] == [
            WorkflowStatus.PENDING_APPROVAL,
            WorkflowStatus.REJECTED,
        ]
        assert transitions[1].reason == "duplicate"

    def test_list_filters(self, repository):
        repository.add_item(_item("item-1", key="a"), actor="system")
        repository.add_item(_item("item-2", key="b", status=WorkflowStatus.APPROVED), actor="system")

        pending = repository.list_items(status=WorkflowStatus.PENDING_APPROVAL)
        assert [i.id for i in pending] == ["item-1"]
        assert repository.list_items(kind=ItemKind.ACTION) == []


class TestAuditLog:
    """Test the append-only audit log."""

    def test_entries_in_write_order(self, repository):
        for status in (AuditStatus.STARTED, AuditStatus.FAILED, AuditStatus.ROLLED_BACK):
            repository.append_audit_entry(AuditLogEntry(
                action_id="act-1",
                status=status,
                detail=f"{status.value} detail",
                timestamp=datetime.now(timezone.utc),
            ))
        repository.append_audit_entry(AuditLogEntry(
            action_id="act-2",
            status=AuditStatus.STARTED,
            detail="other",
            timestamp=datetime.now(timezone.utc),
        ))

        entries = repository.list_audit_entries("act-1")
        assert [e.status for e in entries] == [
            AuditStatus.STARTED,
            AuditStatus.FAILED,
            AuditStatus.ROLLED_BACK,
        ]
        assert entries[0].detail == "started detail"
        assert entries[0].timestamp.tzinfo is not None

    def test_unknown_action_has_no_entries(self, repository):
        assert repository.list_audit_entries("nothing") == []

    def test_missing_schema_raises(self, db_path):
        with pytest.raises(sqlite3.OperationalError):
            WorkflowRepository(db_path).list_audit_entries("act-1")
