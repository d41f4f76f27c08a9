"""
Audit log transports.
"""

from .ingest import AuditSink, HttpAuditSink, SQLiteAuditSink, build_audit_sink

__all__ = ["AuditSink", "HttpAuditSink", "SQLiteAuditSink", "build_audit_sink"]
