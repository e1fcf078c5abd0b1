"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    AuditLogEntry,
    AuditStatus,
    ItemKind,
    StatusTransition,
    UsageRecord,
    WorkflowItem,
    WorkflowStatus,
)

OPEN_STATUSES = (WorkflowStatus.PENDING_APPROVAL, WorkflowStatus.APPROVED)

_ITEM_COLUMNS = (
    "id, kind, key, status, payload, decided_by, reason, created_at, updated_at"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    """Match the naive UTC form usage timestamps are stored in."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    usage_record, status_transition and audit_log are append-only ledgers.
    workflow_item rows are never deleted; only their status columns change,
    and every change is mirrored by a status_transition row.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                resource_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                service TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                cost REAL NOT NULL,
                utilization REAL
            );
            CREATE INDEX IF NOT EXISTS idx_usage_record_resource
                ON usage_record (provider, resource_id, timestamp);

            CREATE TABLE IF NOT EXISTS workflow_item (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                key TEXT NOT NULL,
                status TEXT NOT NULL,
                payload TEXT NOT NULL,
                decided_by TEXT,
                reason TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_workflow_item_key
                ON workflow_item (key, status);

            CREATE TABLE IF NOT EXISTS status_transition (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id TEXT NOT NULL REFERENCES workflow_item (id),
                from_status TEXT,
                to_status TEXT NOT NULL,
                actor TEXT NOT NULL,
                reason TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action_id TEXT NOT NULL,
                status TEXT NOT NULL,
                detail TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()


class WorkflowRepository:
    """Repository for usage records, workflow items and the audit log.

    Each call opens its own connection, so one instance can be shared by
    the orchestrator's worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the tables in this repository's database."""
        initialize_schema(self.db_path)

    # Usage records

    def insert_usage_records(self, records: Iterable[UsageRecord]) -> int:
        """Insert usage records atomically.

        Args:
            records: Records to append

        Returns:
            Number of records inserted
        """
        rows = [
            (
                r.resource_id,
                r.provider,
                r.service,
                r.timestamp.isoformat(),
                r.cost,
                r.utilization,
            )
            for r in records
        ]
        if not rows:
            return 0

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.executemany("""
                INSERT INTO usage_record
                (resource_id, provider, service, timestamp, cost, utilization)
                VALUES (?, ?, ?, ?, ?, ?)
            """, rows)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return len(rows)

    def fetch_usage_records(
        self,
        provider: Optional[str] = None,
        service: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        """Fetch usage records in timestamp order with optional filtering.

        Args:
            provider: Optional provider filter
            service: Optional service filter
            start: Optional inclusive lower bound on timestamp
            end: Optional inclusive upper bound on timestamp

        Returns:
            Records ordered by timestamp (oldest first)
        """
        query = """
            SELECT resource_id, provider, service, timestamp, cost, utilization
            FROM usage_record
        """
        conditions = []
        params: list = []
        if provider:
            conditions.append("provider = ?")
            params.append(provider)
        if service:
            conditions.append("service = ?")
            params.append(service)
        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(_naive_utc(start).isoformat())
        if end is not None:
            conditions.append("timestamp <= ?")
            params.append(_naive_utc(end).isoformat())
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp ASC, id ASC"

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            return [
                UsageRecord(
                    resource_id=row[0],
                    provider=row[1],
                    service=row[2],
                    timestamp=datetime.fromisoformat(row[3]),
                    cost=row[4],
                    utilization=row[5],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    # Workflow items

    def add_item(self, item: WorkflowItem, actor: str) -> bool:
        """Insert a workflow item unless an open item shares its key.

        The check and the insert run in one immediate transaction, and the
        initial status is written to the transition history.

        Args:
            item: Item to store
            actor: Who created it

        Returns:
            True if inserted, False if an open duplicate already exists
        """
        now = _utcnow().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                "SELECT COUNT(*) FROM workflow_item WHERE key = ? AND status IN (?, ?)",
                (item.key,) + tuple(s.value for s in OPEN_STATUSES),
            )
            if cursor.fetchone()[0]:
                conn.rollback()
                return False

            conn.execute(f"""
                INSERT INTO workflow_item ({_ITEM_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                item.id,
                item.kind.value,
                item.key,
                item.status.value,
                json.dumps(item.payload, sort_keys=True),
                item.decided_by,
                item.reason,
                now,
                now,
            ))
            conn.execute("""
                INSERT INTO status_transition
                (item_id, from_status, to_status, actor, reason, timestamp)
                VALUES (?, NULL, ?, ?, NULL, ?)
            """, (item.id, item.status.value, actor, now))
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_item(self, item_id: str) -> Optional[WorkflowItem]:
        """Get a workflow item by id, or None if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM workflow_item WHERE id = ?",
                (item_id,),
            )
            row = cursor.fetchone()
            return _row_to_item(row) if row else None
        finally:
            conn.close()

    def list_items(
        self,
        kind: Optional[ItemKind] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> List[WorkflowItem]:
        """List workflow items in creation order.

        Args:
            kind: Optional filter on item kind
            status: Optional filter on current status

        Returns:
            Matching items, oldest first
        """
        query = f"SELECT {_ITEM_COLUMNS} FROM workflow_item"
        conditions = []
        params = []
        if kind is not None:
            conditions.append("kind = ?")
            params.append(kind.value)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at ASC, rowid ASC"

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            return [_row_to_item(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def update_status(
        self,
        item_id: str,
        expected: WorkflowStatus,
        new: WorkflowStatus,
        actor: str,
        reason: Optional[str] = None,
        record_decision: bool = False,
    ) -> bool:
        """Compare-and-set an item's status and record the transition.

        Args:
            item_id: Item to update
            expected: Status the item must currently have
            new: Status to move to
            actor: Who made the change
            reason: Optional reason or error detail kept with the transition
            record_decision: Also store actor and reason on the item itself

        Returns:
            True if updated, False if the item was not in the expected status
        """
        now = _utcnow().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            if record_decision:
                cursor = conn.execute("""
                    UPDATE workflow_item
                    SET status = ?, decided_by = ?, reason = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                """, (new.value, actor, reason, now, item_id, expected.value))
            else:
                cursor = conn.execute("""
                    UPDATE workflow_item
                    SET status = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                """, (new.value, now, item_id, expected.value))

            if cursor.rowcount != 1:
                conn.rollback()
                return False

            conn.execute("""
                INSERT INTO status_transition
                (item_id, from_status, to_status, actor, reason, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (item_id, expected.value, new.value, actor, reason, now))
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list_transitions(self, item_id: str) -> List[StatusTransition]:
        """Status history of an item, oldest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT item_id, from_status, to_status, actor, timestamp, reason
                FROM status_transition
                WHERE item_id = ?
                ORDER BY id ASC
            """, (item_id,))
            return [
                StatusTransition(
                    item_id=row[0],
                    from_status=WorkflowStatus(row[1]) if row[1] else None,
                    to_status=WorkflowStatus(row[2]),
                    actor=row[3],
                    timestamp=datetime.fromisoformat(row[4]),
                    reason=row[5],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    # Audit log

    def append_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append one entry to the audit log and commit it immediately."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO audit_log (action_id, status, detail, timestamp)
                VALUES (?, ?, ?, ?)
            """, (
                entry.action_id,
                entry.status.value,
                entry.detail,
                entry.timestamp.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()

    def list_audit_entries(self, action_id: str) -> List[AuditLogEntry]:
        """Audit trail of an action in write order."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT action_id, status, detail, timestamp
                FROM audit_log
                WHERE action_id = ?
                ORDER BY id ASC
            """, (action_id,))
            return [
                AuditLogEntry(
                    action_id=row[0],
                    status=AuditStatus(row[1]),
                    detail=row[2],
                    timestamp=datetime.fromisoformat(row[3]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()


def _row_to_item(row) -> WorkflowItem:
    return WorkflowItem(
        id=row[0],
        kind=ItemKind(row[1]),
        key=row[2],
        status=WorkflowStatus(row[3]),
        payload=json.loads(row[4]),
        decided_by=row[5],
        reason=row[6],
        created_at=datetime.fromisoformat(row[7]),
        updated_at=datetime.fromisoformat(row[8]),
    )
