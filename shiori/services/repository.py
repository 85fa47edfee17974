from __future__ import annotations

from datetime import datetime
from typing import Protocol

from shiori.extensions import db
from shiori.models import Bookmark, Tag


class Repository(Protocol):
    def find_bookmark_by_owner_and_path(self, owner_id: int, path: str): ...

    def find_tag_by_owner_and_name(self, owner_id: int, name: str): ...

    def create_tag(self, owner_id: int, name: str, is_favorite: bool = False): ...

    def create_bookmark(self, owner_id: int, fields: dict, tag_ids: list[int]): ...

    def replace_bookmark_tags(self, bookmark_id: int, tag_ids: list[int]) -> None: ...

    def update_bookmark(self, bookmark_id: int, fields: dict) -> None: ...

    def update_tag(self, tag_id: int, fields: dict) -> None: ...

    def list_bookmarks(self, owner_id: int) -> list: ...

    def list_tags(self, owner_id: int) -> list: ...


class SqlAlchemyRepository:
    """Repository over the Flask-SQLAlchemy session.

    Writes are flushed, never committed; the caller owns the transaction.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def find_bookmark_by_owner_and_path(self, owner_id: int, path: str):
        return (
            self.session.query(Bookmark)
            .filter_by(user_id=owner_id, path=path)
            .order_by(Bookmark.id.asc())
            .first()
        )

    def find_tag_by_owner_and_name(self, owner_id: int, name: str):
        return self.session.query(Tag).filter_by(user_id=owner_id, name=name).first()

    def create_tag(self, owner_id: int, name: str, is_favorite: bool = False):
        tag = Tag(user_id=owner_id, name=name, is_favorite=is_favorite)
        self.session.add(tag)
        self.session.flush()
        return tag

    def _tags_by_id(self, tag_ids: list[int]) -> list[Tag]:
        if not tag_ids:
            return []
        rows = self.session.query(Tag).filter(Tag.id.in_(tag_ids)).all()
        by_id = {tag.id: tag for tag in rows}
        ordered: list[Tag] = []
        for tag_id in dict.fromkeys(tag_ids):
            if tag_id in by_id:
                ordered.append(by_id[tag_id])
        return ordered

    def create_bookmark(self, owner_id: int, fields: dict, tag_ids: list[int]):
        created_at: datetime | None = fields.get("created_at")
        bookmark = Bookmark(
            user_id=owner_id,
            path=fields["path"],
            title=fields["title"],
            description=fields.get("description"),
            is_favorite=bool(fields.get("is_favorite")),
        )
        if created_at is not None:
            bookmark.created_at = created_at
        bookmark.tags = self._tags_by_id(tag_ids)
        self.session.add(bookmark)
        self.session.flush()
        return bookmark

    def replace_bookmark_tags(self, bookmark_id: int, tag_ids: list[int]) -> None:
        bookmark = self.session.get(Bookmark, bookmark_id)
        bookmark.tags.clear()
        self.session.flush()
        bookmark.tags.extend(self._tags_by_id(tag_ids))
        self.session.flush()

    def update_bookmark(self, bookmark_id: int, fields: dict) -> None:
        bookmark = self.session.get(Bookmark, bookmark_id)
        for field in ("title", "description", "is_favorite"):
            if field in fields:
                setattr(bookmark, field, fields[field])
        self.session.flush()

    def update_tag(self, tag_id: int, fields: dict) -> None:
        tag = self.session.get(Tag, tag_id)
        for field in ("name", "is_favorite"):
            if field in fields:
                setattr(tag, field, fields[field])
        self.session.flush()

    def list_bookmarks(self, owner_id: int) -> list[Bookmark]:
        return (
            self.session.query(Bookmark)
            .filter_by(user_id=owner_id)
            .order_by(Bookmark.created_at.asc(), Bookmark.id.asc())
            .all()
        )

    def list_tags(self, owner_id: int) -> list[Tag]:
        return (
            self.session.query(Tag)
            .filter_by(user_id=owner_id)
            .order_by(Tag.name.asc())
            .all()
        )
