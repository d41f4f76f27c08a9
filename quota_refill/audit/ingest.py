"""
Audit ingestion transports.

Sinks accept one AuditEvent per call. The HTTP sink posts to an events
endpoint; the SQLite sink appends to the local audit_log ledger.
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

import requests

from quota_refill.config.loader import AuditConfig, AuditSinkType
from quota_refill.errors import AuditIngestError
from quota_refill.logger import get_logger
from quota_refill.storage.db import DEFAULT_DB_PATH, get_connection
from quota_refill.storage.models import AuditActor, AuditEvent, AuditResource

log = get_logger("quota_refill.audit")

OPERATION = "create audit log"


def _event_key_id(event: AuditEvent) -> Optional[str]:
    for resource in event.resources:
        if resource.type == "key":
            return resource.id
    return None


class AuditSink:
    """Destination for audit events."""

    def ingest(self, event: AuditEvent) -> None:
        """Append one event.

        Raises:
            AuditIngestError: If the event is rejected or cannot be delivered
        """
        raise NotImplementedError


class HttpAuditSink(AuditSink):
    """Posts audit events to an HTTP events API as NDJSON.

    Uses the Tinybird-style endpoint ``{base_url}/v0/events?name={datasource}``
    with a Bearer token.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        datasource: str = "audit_logs",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None
    ):
        if not token:
            raise ValueError("token is required for HTTP audit ingestion")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.datasource = datasource
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/v0/events"

    def ingest(self, event: AuditEvent) -> None:
        key_id = _event_key_id(event)
        body = json.dumps(event.to_payload(), separators=(",", ":")) + "\n"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/x-ndjson",
        }

        try:
            res = self.session.post(
                self.url,
                params={"name": self.datasource},
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise AuditIngestError(f"transport error: {e}", OPERATION, key_id) from e

        if not res.ok:
            raise AuditIngestError(
                f"ingestion rejected with {res.status_code}: {res.text[:200]}",
                OPERATION,
                key_id
            )
        log.debug(f"ingested {event.event} for {key_id} ({res.status_code})")


class SQLiteAuditSink(AuditSink):
    """Appends audit events to the local audit_log table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def ingest(self, event: AuditEvent) -> None:
        key_id = _event_key_id(event)
        payload = event.to_payload()
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("""
                    INSERT INTO audit_log
                    (time, workspace_id, event, actor, description, resources, context)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    event.time.isoformat(),
                    event.workspace_id,
                    event.event,
                    json.dumps(payload["actor"], sort_keys=True),
                    event.description,
                    json.dumps(payload["resources"]),
                    json.dumps(payload["context"], sort_keys=True)
                ))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise AuditIngestError(str(e), OPERATION, key_id) from e


def fetch_audit_events(db_path: str = DEFAULT_DB_PATH) -> List[AuditEvent]:
    """Read every event from the local audit ledger, oldest first."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT time, workspace_id, event, actor, description, resources, context
            FROM audit_log ORDER BY id
        """)
        events = []
        for row in cursor.fetchall():
            actor = json.loads(row[3])
            events.append(AuditEvent(
                time=datetime.fromisoformat(row[0]),
                workspace_id=row[1],
                event=row[2],
                actor=AuditActor(type=actor["type"], id=actor["id"]),
                description=row[4],
                resources=tuple(
                    AuditResource(type=r["type"], id=r["id"])
                    for r in json.loads(row[5])
                ),
                context=json.loads(row[6])
            ))
        return events
    finally:
        conn.close()


def build_audit_sink(config: AuditConfig, db_path: str, token: Optional[str] = None) -> AuditSink:
    """Create the sink selected by configuration.

    Args:
        config: Audit section of the refill configuration
        db_path: Database used by the SQLite sink
        token: Bearer token for the HTTP sink

    Raises:
        ValueError: If the HTTP sink is selected without a token
    """
    if config.sink == AuditSinkType.SQLITE:
        return SQLiteAuditSink(db_path)
    return HttpAuditSink(
        base_url=config.url,
        token=token,
        datasource=config.datasource,
        timeout=config.timeout
    )
