"""CSV import and export of bookmarks and tags.

Each data row is first turned into an action (create, update, skip or
error) by a decision function that only reads from the repository. A
separate apply step performs the writes and does nothing in preview mode,
so a preview reports exactly what a committing call would do.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from shiori.models import isoformat_utc
from shiori.services.common import parse_iso_datetime
from shiori.services.csv_format import build_csv, escape_csv, parse_csv
from shiori.services.paths import PATH_MAX_LENGTH, validate_path
from shiori.services.validation import (
    DESCRIPTION_MAX_LENGTH,
    TAG_NAME_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)
from shiori.services.repository import Repository

KIND_BOOKMARKS = "bookmarks"
KIND_TAGS = "tags"
IMPORT_KINDS = (KIND_BOOKMARKS, KIND_TAGS)

MODE_SKIP = "skip"
MODE_UPDATE = "update"
MODE_DUPLICATE = "duplicate"
IMPORT_MODES = {
    KIND_BOOKMARKS: (MODE_SKIP, MODE_UPDATE, MODE_DUPLICATE),
    KIND_TAGS: (MODE_SKIP, MODE_UPDATE),
}

BOOKMARK_EXPORT_HEADER = (
    "path",
    "title",
    "description",
    "isFavorite",
    "tags",
    "createdAt",
)
TAG_EXPORT_HEADER = ("name", "isFavorite")

PREVIEW_TAG_ID = -1
PREVIEW_BOOKMARK_ID = -1

SKIP_REASON_EXISTS = "already exists"


class ImportPayloadError(TypeError):
    pass


class ImportOptionError(ValueError):
    pass


@dataclass
class ImportPreview:
    to_import: list[dict] = field(default_factory=list)
    to_update: list[dict] = field(default_factory=list)
    to_skip: list[dict] = field(default_factory=list)


@dataclass
class ImportResult:
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    tags_created: list[str] = field(default_factory=list)
    preview: ImportPreview = field(default_factory=ImportPreview)

    def as_dict(self):
        return {
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "tagsCreated": list(self.tags_created),
            "preview": {
                "toImport": list(self.preview.to_import),
                "toUpdate": list(self.preview.to_update),
                "toSkip": list(self.preview.to_skip),
            },
        }


@dataclass
class RowError:
    line: int
    message: str


@dataclass
class SkipExisting:
    line: int
    path: str
    title: str
    reason: str = SKIP_REASON_EXISTS


@dataclass
class CreateBookmark:
    line: int
    path: str
    title: str
    description: str | None
    is_favorite: bool
    tag_names: list[str]
    created_at: datetime | None = None


@dataclass
class UpdateBookmark:
    line: int
    bookmark_id: int
    path: str
    title: str
    description: str | None
    is_favorite: bool
    tag_names: list[str]


@dataclass
class CreateTag:
    line: int
    name: str
    is_favorite: bool


@dataclass
class UpdateTag:
    line: int
    tag_id: int
    name: str
    is_favorite: bool


class TagRegistry:
    """Names of tags minted (or, in preview, that would be minted) by one call."""

    def __init__(self):
        self._names: dict[str, None] = {}

    def add(self, name: str) -> None:
        self._names.setdefault(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def names(self) -> list[str]:
        return list(self._names)


def split_tag_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


def parse_row_bool(value: str | None) -> bool:
    return value == "true"


def parse_row_datetime(value: str | None) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (ValueError, OverflowError):
        return None


def get_or_create_tag(
    repository: Repository,
    owner_id: int,
    name: str,
    registry: TagRegistry,
    preview: bool,
) -> int:
    existing = repository.find_tag_by_owner_and_name(owner_id, name)
    if existing is not None:
        return existing.id

    registry.add(name)
    if preview:
        return PREVIEW_TAG_ID

    tag = repository.create_tag(owner_id, name, False)
    return tag.id


class _PendingRows:
    """Rows a preview call would have written, visible to later rows.

    A committing call sees its own earlier writes through the repository;
    a preview call has to remember them to reach the same decisions.
    """

    def __init__(self):
        self.bookmark_paths: set[str] = set()
        self.tag_names: set[str] = set()


def _line_number(index: int) -> int:
    return index + 2


def _bookmark_row_problem(row: dict[str, str]) -> str | None:
    path = row.get("path", "")
    title = row.get("title", "")
    if not path or not title:
        return "path and title are required"
    if len(path) > PATH_MAX_LENGTH:
        return f"path must be {PATH_MAX_LENGTH} characters or fewer"
    if not validate_path(path):
        return "path format is invalid"
    if len(title) > TITLE_MAX_LENGTH:
        return f"title must be {TITLE_MAX_LENGTH} characters or fewer"
    if len(row.get("description", "")) > DESCRIPTION_MAX_LENGTH:
        return f"description must be {DESCRIPTION_MAX_LENGTH} characters or fewer"
    tag_names = split_tag_names(row.get("tags"))
    if any(len(name) > TAG_NAME_MAX_LENGTH for name in tag_names):
        return f"tag names must be {TAG_NAME_MAX_LENGTH} characters or fewer"
    return None


def decide_bookmark_row(
    repository: Repository,
    owner_id: int,
    row: dict[str, str],
    line: int,
    mode: str,
    pending: _PendingRows | None = None,
):
    problem = _bookmark_row_problem(row)
    if problem:
        return RowError(line, problem)

    path = row["path"]
    title = row["title"]
    description = row.get("description") or None
    is_favorite = parse_row_bool(row.get("isFavorite"))
    tag_names = split_tag_names(row.get("tags"))

    if mode != MODE_DUPLICATE:
        existing = repository.find_bookmark_by_owner_and_path(owner_id, path)
        existing_id = existing.id if existing is not None else None
        pending_paths = pending.bookmark_paths if pending is not None else set()
        if existing_id is None and path in pending_paths:
            existing_id = PREVIEW_BOOKMARK_ID

        if existing_id is not None:
            if mode == MODE_SKIP:
                return SkipExisting(line, path, title)
            return UpdateBookmark(
                line=line,
                bookmark_id=existing_id,
                path=path,
                title=title,
                description=description,
                is_favorite=is_favorite,
                tag_names=tag_names,
            )

    return CreateBookmark(
        line=line,
        path=path,
        title=title,
        description=description,
        is_favorite=is_favorite,
        tag_names=tag_names,
        created_at=parse_row_datetime(row.get("createdAt")),
    )


def decide_tag_row(
    repository: Repository,
    owner_id: int,
    row: dict[str, str],
    line: int,
    mode: str,
    pending: _PendingRows | None = None,
):
    name = row.get("name", "")
    if not name:
        return RowError(line, "name is required")
    if len(name) > TAG_NAME_MAX_LENGTH:
        return RowError(
            line, f"name must be {TAG_NAME_MAX_LENGTH} characters or fewer"
        )

    is_favorite = parse_row_bool(row.get("isFavorite"))
    existing = repository.find_tag_by_owner_and_name(owner_id, name)
    existing_id = existing.id if existing is not None else None
    pending_names = pending.tag_names if pending is not None else set()
    if existing_id is None and name in pending_names:
        existing_id = PREVIEW_TAG_ID

    if existing_id is not None:
        if mode == MODE_SKIP:
            return SkipExisting(line, "", name)
        return UpdateTag(line, existing_id, name, is_favorite)
    return CreateTag(line, name, is_favorite)


def apply_action(
    action,
    repository: Repository,
    owner_id: int,
    registry: TagRegistry,
    preview: bool,
    result: ImportResult,
    pending: _PendingRows | None = None,
) -> None:
    if isinstance(action, RowError):
        result.errors.append(f"line {action.line}: {action.message}")
        return

    if isinstance(action, SkipExisting):
        result.skipped += 1
        result.preview.to_skip.append(
            {"path": action.path, "title": action.title, "reason": action.reason}
        )
        return

    if isinstance(action, (CreateBookmark, UpdateBookmark)):
        tag_ids = [
            get_or_create_tag(repository, owner_id, name, registry, preview)
            for name in action.tag_names
        ]

    if isinstance(action, CreateBookmark):
        if preview:
            if pending is not None:
                pending.bookmark_paths.add(action.path)
        else:
            repository.create_bookmark(
                owner_id,
                {
                    "path": action.path,
                    "title": action.title,
                    "description": action.description,
                    "is_favorite": action.is_favorite,
                    "created_at": action.created_at,
                },
                [tag_id for tag_id in tag_ids if tag_id != PREVIEW_TAG_ID],
            )
        result.imported += 1
        result.preview.to_import.append(
            {"path": action.path, "title": action.title, "tags": action.tag_names}
        )
    elif isinstance(action, UpdateBookmark):
        if not preview:
            repository.replace_bookmark_tags(action.bookmark_id, tag_ids)
            repository.update_bookmark(
                action.bookmark_id,
                {
                    "title": action.title,
                    "description": action.description,
                    "is_favorite": action.is_favorite,
                },
            )
        result.updated += 1
        result.preview.to_update.append({"path": action.path, "title": action.title})
    elif isinstance(action, CreateTag):
        if preview:
            if pending is not None:
                pending.tag_names.add(action.name)
        else:
            repository.create_tag(owner_id, action.name, action.is_favorite)
        result.imported += 1
        result.preview.to_import.append({"path": "", "title": action.name, "tags": []})
    elif isinstance(action, UpdateTag):
        if not preview:
            repository.update_tag(action.tag_id, {"is_favorite": action.is_favorite})
        result.updated += 1
        result.preview.to_update.append({"path": "", "title": action.name})
    else:
        raise TypeError(f"unsupported import action: {action!r}")


def reconcile_import(
    csv_text: str,
    kind: str,
    *,
    owner_id: int,
    repository: Repository,
    preview: bool = False,
    mode: str = MODE_SKIP,
) -> ImportResult:
    if not isinstance(csv_text, str):
        raise ImportPayloadError("csv payload must be text")
    if kind not in IMPORT_KINDS:
        raise ImportOptionError(f"unsupported import type: {kind}")
    if mode not in IMPORT_MODES[kind]:
        raise ImportOptionError(f"unsupported mode for {kind}: {mode}")

    decide = decide_bookmark_row if kind == KIND_BOOKMARKS else decide_tag_row
    result = ImportResult()
    registry = TagRegistry()
    pending = _PendingRows() if preview else None

    for index, row in enumerate(parse_csv(csv_text)):
        line = _line_number(index)
        try:
            action = decide(repository, owner_id, row, line, mode, pending)
            apply_action(
                action, repository, owner_id, registry, preview, result, pending
            )
        except Exception as exc:
            result.errors.append(f"line {line}: {exc}")

    result.tags_created = registry.names()
    return result


def _bookmark_export_row(bookmark) -> list[str]:
    return [
        escape_csv(bookmark.path),
        escape_csv(bookmark.title),
        escape_csv(bookmark.description),
        "true" if bookmark.is_favorite else "false",
        escape_csv(",".join(tag.name for tag in bookmark.tags)),
        isoformat_utc(bookmark.created_at) or "",
    ]


def _tag_export_row(tag) -> list[str]:
    return [escape_csv(tag.name), "true" if tag.is_favorite else "false"]


def build_export_csv(kind: str, owner_id: int, repository: Repository) -> str:
    if kind == KIND_BOOKMARKS:
        rows = [_bookmark_export_row(b) for b in repository.list_bookmarks(owner_id)]
        return build_csv(BOOKMARK_EXPORT_HEADER, rows)
    if kind == KIND_TAGS:
        rows = [_tag_export_row(t) for t in repository.list_tags(owner_id)]
        return build_csv(TAG_EXPORT_HEADER, rows)
    raise ImportOptionError(f"unsupported export type: {kind}")
