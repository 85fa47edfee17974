from __future__ import annotations

from flask import has_request_context, request

from shiori.extensions import db
from shiori.models import AuditLog

SEVERITY_LOW = "LOW"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_HIGH = "HIGH"
SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH)

OUTCOME_SUCCESS = "SUCCESS"
OUTCOME_FAILURE = "FAILURE"

ACTION_LOGIN = "LOGIN"
ACTION_LOGIN_FAILED = "LOGIN_FAILED"
ACTION_LOGOUT = "LOGOUT"
ACTION_REGISTER = "REGISTER"
ACTION_TOKEN_CREATE = "TOKEN_CREATE"
ACTION_TOKEN_REVOKE = "TOKEN_REVOKE"
ACTION_BOOKMARK_CREATE = "BOOKMARK_CREATE"
ACTION_BOOKMARK_UPDATE = "BOOKMARK_UPDATE"
ACTION_BOOKMARK_DELETE = "BOOKMARK_DELETE"
ACTION_TAG_CREATE = "TAG_CREATE"
ACTION_TAG_UPDATE = "TAG_UPDATE"
ACTION_TAG_DELETE = "TAG_DELETE"
ACTION_DATA_IMPORT = "DATA_IMPORT"
ACTION_DATA_EXPORT = "DATA_EXPORT"

AUDIT_EXPORT_HEADER = (
    "id",
    "timestamp",
    "userId",
    "username",
    "action",
    "resourceType",
    "resourceId",
    "severity",
    "ipAddress",
    "outcome",
)


def log_audit_event(
    action: str,
    user_id: int | None,
    resource_type: str | None = None,
    resource_id: int | None = None,
    details: dict | None = None,
    severity: str = SEVERITY_LOW,
    outcome: str = OUTCOME_SUCCESS,
) -> AuditLog:
    """Add an audit row to the session; the caller commits."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        severity=severity,
        outcome=outcome,
        details=details or {},
    )
    if has_request_context():
        entry.ip_address = request.headers.get("X-Forwarded-For", request.remote_addr)
        entry.user_agent = (request.user_agent.string or "")[:512] or None
        entry.request_id = request.headers.get("X-Request-Id")
    db.session.add(entry)
    return entry


def filter_audit_logs(query, action=None, start=None, end=None, severity=None):
    if action:
        query = query.filter(AuditLog.action == action)
    if severity:
        query = query.filter(AuditLog.severity == severity)
    if start is not None:
        query = query.filter(AuditLog.timestamp >= start)
    if end is not None:
        query = query.filter(AuditLog.timestamp <= end)
    return query
