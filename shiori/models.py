import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from shiori.extensions import db, login_manager
from shiori.services.paths import classify_path


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime | None) -> str | None:
    """Render as ``2024-01-01T00:00:00.000Z``; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


bookmark_tags = db.Table(
    "bookmark_tags",
    db.Column(
        "bookmark_id",
        db.Integer,
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "tag_id",
        db.Integer,
        db.ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def as_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "isAdmin": self.is_admin,
            "isActive": self.is_active,
            "createdAt": isoformat_utc(self.created_at),
        }


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    path = db.Column(db.String(2000), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), nullable=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    tags = db.relationship(
        "Tag",
        secondary=bookmark_tags,
        backref=db.backref("bookmarks", lazy=True),
        order_by="Tag.name",
    )

    # (user_id, path) is a lookup key for imports, not a uniqueness rule:
    # duplicate-mode imports store the same path twice on purpose.
    __table_args__ = (
        db.Index("ix_bookmark_user_path", "user_id", "path"),
        db.Index("ix_bookmark_user_created", "user_id", "created_at"),
    )

    @property
    def path_type(self) -> str:
        return classify_path(self.path)

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    def as_dict(self):
        return {
            "id": self.id,
            "path": self.path,
            "pathType": self.path_type,
            "title": self.title,
            "description": self.description,
            "isFavorite": self.is_favorite,
            "tags": self.tag_names,
            "createdAt": isoformat_utc(self.created_at),
            "updatedAt": isoformat_utc(self.updated_at),
        }


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(50), nullable=False)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "isFavorite": self.is_favorite,
            "bookmarkCount": len(self.bookmarks),
            "createdAt": isoformat_utc(self.created_at),
        }


class ApiToken(db.Model):
    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(100), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User", backref="api_tokens")

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @classmethod
    def issue_token(cls, prefix="bkmk"):
        token = f"{prefix}_{secrets.token_hex(32)}"
        return token, cls.hash_token(token)

    def is_usable(self, now: datetime | None = None) -> bool:
        if self.revoked_at is not None:
            return False
        if self.expires_at is None:
            return True
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > (now or utcnow())

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "lastUsedAt": isoformat_utc(self.last_used_at),
            "createdAt": isoformat_utc(self.created_at),
            "expiresAt": isoformat_utc(self.expires_at),
            "revokedAt": isoformat_utc(self.revoked_at),
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True, index=True
    )
    action = db.Column(db.String(64), nullable=False, index=True)
    resource_type = db.Column(db.String(32), nullable=True)
    resource_id = db.Column(db.Integer, nullable=True)
    severity = db.Column(db.String(8), nullable=False, default="LOW")
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    details = db.Column(db.JSON, nullable=False, default=dict)
    outcome = db.Column(db.String(16), nullable=False, default="SUCCESS")

    user = db.relationship("User")

    def as_dict(self):
        return {
            "id": self.id,
            "timestamp": isoformat_utc(self.timestamp),
            "userId": self.user_id,
            "username": self.user.username if self.user else None,
            "action": self.action,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "severity": self.severity,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "requestId": self.request_id,
            "details": self.details,
            "outcome": self.outcome,
        }
