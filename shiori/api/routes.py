from __future__ import annotations

import math

from flask import Response, current_app, g, jsonify, request
from sqlalchemy import or_

from shiori.api import api_bp
from shiori.extensions import db
from shiori.models import ApiToken, AuditLog, Bookmark, Tag, User, utcnow
from shiori.services.audit import (
    ACTION_BOOKMARK_CREATE,
    ACTION_BOOKMARK_DELETE,
    ACTION_BOOKMARK_UPDATE,
    ACTION_DATA_EXPORT,
    ACTION_DATA_IMPORT,
    ACTION_TAG_CREATE,
    ACTION_TAG_DELETE,
    ACTION_TAG_UPDATE,
    ACTION_TOKEN_CREATE,
    ACTION_TOKEN_REVOKE,
    AUDIT_EXPORT_HEADER,
    SEVERITIES,
    SEVERITY_MEDIUM,
    filter_audit_logs,
    log_audit_event,
)
from shiori.services.common import parse_iso_datetime, parse_tags, to_bool
from shiori.services.csv_format import build_csv, escape_csv
from shiori.services.data_transfer import (
    KIND_BOOKMARKS,
    KIND_TAGS,
    MODE_SKIP,
    ImportOptionError,
    ImportPayloadError,
    build_export_csv,
    reconcile_import,
)
from shiori.services.paths import PATH_TYPES
from shiori.services.repository import SqlAlchemyRepository
from shiori.services.search import search_bookmarks
from shiori.services.security import api_auth_required
from shiori.services.validation import (
    ValidationError,
    api_error,
    validate_bookmark_payload,
    validate_choice,
    validate_page_args,
    validate_tag_payload,
    validate_token_payload,
)

BOOKMARK_SORT_COLUMNS = {
    "created_at": Bookmark.created_at,
    "updated_at": Bookmark.updated_at,
    "title": Bookmark.title,
}
TAG_SORTS = ("name", "created_at", "bookmark_count")
TOKEN_SORT_COLUMNS = {
    "name": ApiToken.name,
    "created_at": ApiToken.created_at,
    "last_used_at": ApiToken.last_used_at,
    "expires_at": ApiToken.expires_at,
}
ORDERS = ("asc", "desc")


@api_bp.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    return api_error("VALIDATION_ERROR", error.message, 400, error.details)


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def _query_datetime(field: str):
    raw = request.args.get(field)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(
            "invalid query parameters",
            [{"field": field, "message": f"{field} must be an ISO-8601 datetime"}],
        ) from None


def _resolve_tags(user_id: int, names: list[str]) -> list[Tag]:
    tags: list[Tag] = []
    for name in names:
        tag = Tag.query.filter_by(user_id=user_id, name=name).first()
        if not tag:
            tag = Tag(user_id=user_id, name=name)
            db.session.add(tag)
        tags.append(tag)
    return tags


def _get_user_bookmark_or_404(user_id: int, bookmark_id: int):
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return None, api_error("NOT_FOUND", "bookmark not found", 404)
    return bookmark, None


def _get_user_tag_or_404(user_id: int, tag_id: int):
    tag = Tag.query.filter_by(id=tag_id, user_id=user_id).first()
    if not tag:
        return None, api_error("NOT_FOUND", "tag not found", 404)
    return tag, None


def _csv_download(payload: str, prefix: str) -> Response:
    filename = f"{prefix}_{utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        payload,
        content_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shiori"})


@api_bp.route("/admin/users", methods=["POST"])
@api_auth_required(admin=True)
def admin_create_user():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    is_admin = to_bool(payload.get("is_admin"), default=False)

    if not username or not password:
        return api_error("VALIDATION_ERROR", "username and password are required", 400)
    if User.query.filter_by(username=username).first():
        return api_error("CONFLICT", "username already exists", 409)

    user = User(username=username, is_admin=is_admin, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({"status": "created", "user_id": user.id}), 201


@api_bp.route("/admin/users", methods=["GET"])
@api_auth_required(admin=True)
def admin_list_users():
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify({"items": [user.as_dict() for user in users]})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list():
    user = g.api_user
    args = request.args
    path_type = validate_choice(args.get("pathType"), PATH_TYPES, "pathType", "")
    sort = validate_choice(
        args.get("sort"), tuple(BOOKMARK_SORT_COLUMNS), "sort", "created_at"
    )
    order = validate_choice(args.get("order"), ORDERS, "order", "desc")
    page, limit = validate_page_args(args)

    query = Bookmark.query.filter_by(user_id=user.id)
    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Bookmark.title.ilike(pattern),
                Bookmark.description.ilike(pattern),
                Bookmark.path.ilike(pattern),
            )
        )
    if to_bool(args.get("favorite")):
        query = query.filter(Bookmark.is_favorite.is_(True))
    tag_names = parse_tags(args.get("tags"))
    if tag_names:
        query = query.filter(
            Bookmark.tags.any(Tag.name.in_(tag_names) & (Tag.user_id == user.id))
        )

    column = BOOKMARK_SORT_COLUMNS[sort]
    if order == "asc":
        query = query.order_by(column.asc(), Bookmark.id.asc())
    else:
        query = query.order_by(column.desc(), Bookmark.id.desc())

    offset = (page - 1) * limit
    if path_type:
        # Path type is derived, so it is filtered after loading.
        matching = [b for b in query.all() if b.path_type == path_type]
        total = len(matching)
        items = matching[offset : offset + limit]
    else:
        total = query.count()
        items = query.offset(offset).limit(limit).all()

    return jsonify(
        {
            "data": [item.as_dict() for item in items],
            "pagination": _pagination(page, limit, total),
        }
    )


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create():
    user = g.api_user
    data = validate_bookmark_payload(request.get_json(silent=True) or {})

    bookmark = Bookmark(
        user_id=user.id,
        path=data["path"],
        title=data["title"],
        description=data.get("description"),
        is_favorite=data["is_favorite"],
    )
    bookmark.tags = _resolve_tags(user.id, data["tags"])
    db.session.add(bookmark)
    db.session.flush()
    log_audit_event(
        ACTION_BOOKMARK_CREATE,
        user.id,
        "bookmark",
        bookmark.id,
        {"path": bookmark.path, "pathType": bookmark.path_type},
    )
    db.session.commit()
    return jsonify({"data": bookmark.as_dict()}), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get(bookmark_id: int):
    bookmark, error = _get_user_bookmark_or_404(g.api_user.id, bookmark_id)
    if error:
        return error
    return jsonify({"data": bookmark.as_dict()})


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["PUT", "PATCH"])
@api_auth_required()
def bookmarks_update(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    data = validate_bookmark_payload(request.get_json(silent=True) or {}, partial=True)
    for field in ("path", "title", "description", "is_favorite"):
        if field in data:
            setattr(bookmark, field, data[field])
    if "tags" in data:
        bookmark.tags = _resolve_tags(user.id, data["tags"])
    bookmark.updated_at = utcnow()
    log_audit_event(
        ACTION_BOOKMARK_UPDATE,
        user.id,
        "bookmark",
        bookmark.id,
        {"fields": sorted(data)},
    )
    db.session.commit()
    return jsonify({"data": bookmark.as_dict()})


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    log_audit_event(
        ACTION_BOOKMARK_DELETE,
        user.id,
        "bookmark",
        bookmark.id,
        {"path": bookmark.path},
        severity=SEVERITY_MEDIUM,
    )
    bookmark.tags.clear()
    db.session.delete(bookmark)
    db.session.commit()
    return "", 204


@api_bp.route("/bookmarks/<int:bookmark_id>/favorite", methods=["PUT"])
@api_auth_required()
def bookmarks_toggle_favorite(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    bookmark.is_favorite = not bookmark.is_favorite
    log_audit_event(
        ACTION_BOOKMARK_UPDATE,
        user.id,
        "bookmark",
        bookmark.id,
        {"isFavorite": bookmark.is_favorite},
    )
    db.session.commit()
    return jsonify({"data": bookmark.as_dict()})


@api_bp.route("/search", methods=["GET"])
@api_auth_required()
def search_api():
    user = g.api_user
    query = request.args.get("q", "")
    limit = request.args.get("limit", default=50, type=int)
    if not query.strip():
        return jsonify({"items": []})

    bookmarks = Bookmark.query.filter_by(user_id=user.id).all()
    ranked = search_bookmarks(bookmarks, query, limit=max(1, min(limit, 100)))
    return jsonify(
        {
            "items": [
                {
                    **row["bookmark"].as_dict(),
                    "score": row["score"],
                    "reasons": row["reasons"],
                }
                for row in ranked
            ]
        }
    )


@api_bp.route("/tags", methods=["GET"])
@api_auth_required()
def tags_list():
    user = g.api_user
    args = request.args
    sort = validate_choice(args.get("sort"), TAG_SORTS, "sort", "name")
    order = validate_choice(args.get("order"), ORDERS, "order", "asc")

    query = Tag.query.filter_by(user_id=user.id)
    search = (args.get("search") or "").strip()
    if search:
        query = query.filter(Tag.name.ilike(f"%{search}%"))
    if "favorite" in args:
        query = query.filter(Tag.is_favorite.is_(to_bool(args.get("favorite"))))

    tags = query.order_by(Tag.name.asc()).all()
    if sort == "bookmark_count":
        tags.sort(key=lambda tag: (len(tag.bookmarks), tag.name))
    elif sort == "created_at":
        tags.sort(key=lambda tag: (tag.created_at, tag.id))
    if order == "desc":
        tags.reverse()

    return jsonify({"data": [tag.as_dict() for tag in tags]})


@api_bp.route("/tags", methods=["POST"])
@api_auth_required()
def tags_create():
    user = g.api_user
    data = validate_tag_payload(request.get_json(silent=True) or {})
    if Tag.query.filter_by(user_id=user.id, name=data["name"]).first():
        return api_error("CONFLICT", "tag already exists", 409)

    tag = Tag(user_id=user.id, name=data["name"], is_favorite=data["is_favorite"])
    db.session.add(tag)
    db.session.flush()
    log_audit_event(ACTION_TAG_CREATE, user.id, "tag", tag.id, {"name": tag.name})
    db.session.commit()
    return jsonify({"data": tag.as_dict()}), 201


@api_bp.route("/tags/<int:tag_id>", methods=["GET"])
@api_auth_required()
def tags_get(tag_id: int):
    tag, error = _get_user_tag_or_404(g.api_user.id, tag_id)
    if error:
        return error
    return jsonify({"data": tag.as_dict()})


@api_bp.route("/tags/<int:tag_id>", methods=["PUT", "PATCH"])
@api_auth_required()
def tags_update(tag_id: int):
    user = g.api_user
    tag, error = _get_user_tag_or_404(user.id, tag_id)
    if error:
        return error

    data = validate_tag_payload(request.get_json(silent=True) or {}, partial=True)
    new_name = data.get("name")
    if new_name and new_name != tag.name:
        if Tag.query.filter_by(user_id=user.id, name=new_name).first():
            return api_error("CONFLICT", "tag already exists", 409)
        tag.name = new_name
    if "is_favorite" in data:
        tag.is_favorite = data["is_favorite"]
    log_audit_event(ACTION_TAG_UPDATE, user.id, "tag", tag.id, {"fields": sorted(data)})
    db.session.commit()
    return jsonify({"data": tag.as_dict()})


@api_bp.route("/tags/<int:tag_id>", methods=["DELETE"])
@api_auth_required()
def tags_delete(tag_id: int):
    user = g.api_user
    tag, error = _get_user_tag_or_404(user.id, tag_id)
    if error:
        return error

    log_audit_event(
        ACTION_TAG_DELETE,
        user.id,
        "tag",
        tag.id,
        {"name": tag.name},
        severity=SEVERITY_MEDIUM,
    )
    # Bookmarks stay; only the associations go.
    tag.bookmarks.clear()
    db.session.delete(tag)
    db.session.commit()
    return "", 204


@api_bp.route("/tags/<int:tag_id>/favorite", methods=["PUT"])
@api_auth_required()
def tags_toggle_favorite(tag_id: int):
    user = g.api_user
    tag, error = _get_user_tag_or_404(user.id, tag_id)
    if error:
        return error

    tag.is_favorite = not tag.is_favorite
    log_audit_event(
        ACTION_TAG_UPDATE, user.id, "tag", tag.id, {"isFavorite": tag.is_favorite}
    )
    db.session.commit()
    return jsonify({"data": tag.as_dict()})


def _export(kind: str):
    user = g.api_user
    try:
        payload = build_export_csv(kind, user.id, SqlAlchemyRepository())
        log_audit_event(ACTION_DATA_EXPORT, user.id, kind, details={"type": kind})
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Export of %s failed for user %s", kind, user.id)
        return api_error("EXPORT_ERROR", "export failed", 500)
    return _csv_download(payload, kind)


def _import(kind: str):
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    csv_text = payload.get("csv")
    if not csv_text:
        return api_error("VALIDATION_ERROR", "csv data is required", 400)
    if isinstance(csv_text, str):
        max_bytes = current_app.config["IMPORT_MAX_BYTES"]
        if len(csv_text.encode("utf-8")) > max_bytes:
            return api_error(
                "VALIDATION_ERROR", f"csv data exceeds {max_bytes} bytes", 400
            )

    preview = to_bool(payload.get("preview"), default=False)
    mode = payload.get("mode") or MODE_SKIP
    try:
        result = reconcile_import(
            csv_text,
            kind,
            owner_id=user.id,
            repository=SqlAlchemyRepository(),
            preview=preview,
            mode=mode,
        )
    except (ImportPayloadError, ImportOptionError) as exc:
        db.session.rollback()
        current_app.logger.warning("Rejected %s import: %s", kind, exc)
        return api_error("VALIDATION_ERROR", str(exc), 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Import of %s failed for user %s", kind, user.id)
        return api_error("IMPORT_ERROR", "import failed", 500)

    if preview:
        db.session.rollback()
    else:
        log_audit_event(
            ACTION_DATA_IMPORT,
            user.id,
            kind,
            details={
                "type": kind,
                "mode": mode,
                "imported": result.imported,
                "updated": result.updated,
                "skipped": result.skipped,
                "errors": len(result.errors),
            },
            severity=SEVERITY_MEDIUM,
        )
        db.session.commit()

    if result.errors:
        current_app.logger.warning(
            "%s import for user %s finished with %d row errors",
            kind,
            user.id,
            len(result.errors),
        )
    return jsonify({"data": result.as_dict()})


@api_bp.route("/bookmarks/export", methods=["GET"])
@api_auth_required()
def bookmarks_export():
    return _export(KIND_BOOKMARKS)


@api_bp.route("/bookmarks/import", methods=["POST"])
@api_auth_required()
def bookmarks_import():
    return _import(KIND_BOOKMARKS)


@api_bp.route("/tags/export", methods=["GET"])
@api_auth_required()
def tags_export():
    return _export(KIND_TAGS)


@api_bp.route("/tags/import", methods=["POST"])
@api_auth_required()
def tags_import():
    return _import(KIND_TAGS)


@api_bp.route("/tokens", methods=["GET"])
@api_auth_required()
def tokens_list():
    user = g.api_user
    sort = validate_choice(
        request.args.get("sort"), tuple(TOKEN_SORT_COLUMNS), "sort", "created_at"
    )
    order = validate_choice(request.args.get("order"), ORDERS, "order", "desc")
    column = TOKEN_SORT_COLUMNS[sort]
    tokens = (
        ApiToken.query.filter_by(user_id=user.id)
        .filter(ApiToken.revoked_at.is_(None))
        .order_by(column.asc() if order == "asc" else column.desc())
        .all()
    )
    return jsonify({"data": [token.as_dict() for token in tokens]})


@api_bp.route("/tokens", methods=["POST"])
@api_auth_required()
def tokens_create():
    user = g.api_user
    data = validate_token_payload(request.get_json(silent=True) or {})
    if data["expires_at"] is not None and data["expires_at"] <= utcnow():
        raise ValidationError(
            "invalid input",
            [{"field": "expiresAt", "message": "expiresAt must be in the future"}],
        )

    token, token_hash = ApiToken.issue_token(current_app.config["TOKEN_PREFIX"])
    row = ApiToken(
        user_id=user.id,
        name=data["name"],
        token_hash=token_hash,
        expires_at=data["expires_at"],
    )
    db.session.add(row)
    db.session.flush()
    log_audit_event(
        ACTION_TOKEN_CREATE,
        user.id,
        "api_token",
        row.id,
        {"name": row.name},
        severity=SEVERITY_MEDIUM,
    )
    db.session.commit()
    return jsonify({"data": {**row.as_dict(), "token": token}}), 201


@api_bp.route("/tokens/<int:token_id>", methods=["DELETE"])
@api_auth_required()
def tokens_revoke(token_id: int):
    user = g.api_user
    row = ApiToken.query.filter_by(id=token_id, user_id=user.id).first()
    if not row or row.revoked_at is not None:
        return api_error("NOT_FOUND", "token not found", 404)

    row.revoked_at = utcnow()
    log_audit_event(
        ACTION_TOKEN_REVOKE,
        user.id,
        "api_token",
        row.id,
        {"name": row.name},
        severity=SEVERITY_MEDIUM,
    )
    db.session.commit()
    return "", 204


def _audit_query(for_user_id: int | None):
    args = request.args
    severity = validate_choice(args.get("severity"), SEVERITIES, "severity", "")
    query = AuditLog.query
    if for_user_id is not None:
        query = query.filter(AuditLog.user_id == for_user_id)
    return filter_audit_logs(
        query,
        action=(args.get("action") or "").strip() or None,
        start=_query_datetime("from"),
        end=_query_datetime("to"),
        severity=severity or None,
    ).order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def _paged_audit_response(query):
    page, limit = validate_page_args(
        request.args, default_limit=current_app.config["AUDIT_LOG_PAGE_LIMIT"]
    )
    total = query.count()
    logs = query.offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "data": [log.as_dict() for log in logs],
            "pagination": _pagination(page, limit, total),
        }
    )


@api_bp.route("/audit-logs", methods=["GET"])
@api_auth_required()
def audit_logs_list():
    return _paged_audit_response(_audit_query(g.api_user.id))


@api_bp.route("/admin/audit-logs", methods=["GET"])
@api_auth_required(admin=True)
def admin_audit_logs_list():
    user_id = request.args.get("userId", type=int)
    return _paged_audit_response(_audit_query(user_id))


@api_bp.route("/admin/audit-logs/export", methods=["GET"])
@api_auth_required(admin=True)
def admin_audit_logs_export():
    export_format = validate_choice(
        request.args.get("format"), ("json", "csv"), "format", "json"
    )
    logs = _audit_query(request.args.get("userId", type=int)).all()
    if export_format == "json":
        return jsonify({"data": [log.as_dict() for log in logs]})

    rows = []
    for log in logs:
        item = log.as_dict()
        rows.append([escape_csv(item[column]) for column in AUDIT_EXPORT_HEADER])
    return _csv_download(build_csv(AUDIT_EXPORT_HEADER, rows), "audit_logs")
