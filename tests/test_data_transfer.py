from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from shiori.services.data_transfer import (
    KIND_BOOKMARKS,
    KIND_TAGS,
    MODE_DUPLICATE,
    MODE_SKIP,
    MODE_UPDATE,
    ImportOptionError,
    ImportPayloadError,
    build_export_csv,
    reconcile_import,
)

OWNER = 1


class MemoryRepository:
    """In-memory stand-in that records every write."""

    def __init__(self):
        self.bookmarks = []
        self.tags = []
        self.writes = []
        self._next_id = 1

    def _id(self):
        value = self._next_id
        self._next_id += 1
        return value

    def _tag(self, tag_id):
        return next(tag for tag in self.tags if tag.id == tag_id)

    def _bookmark(self, bookmark_id):
        return next(b for b in self.bookmarks if b.id == bookmark_id)

    def find_bookmark_by_owner_and_path(self, owner_id, path):
        for bookmark in self.bookmarks:
            if bookmark.user_id == owner_id and bookmark.path == path:
                return bookmark
        return None

    def find_tag_by_owner_and_name(self, owner_id, name):
        for tag in self.tags:
            if tag.user_id == owner_id and tag.name == name:
                return tag
        return None

    def create_tag(self, owner_id, name, is_favorite=False):
        self.writes.append(("create_tag", name))
        tag = SimpleNamespace(
            id=self._id(), user_id=owner_id, name=name, is_favorite=is_favorite
        )
        self.tags.append(tag)
        return tag

    def create_bookmark(self, owner_id, fields, tag_ids):
        self.writes.append(("create_bookmark", fields["path"]))
        bookmark = SimpleNamespace(
            id=self._id(),
            user_id=owner_id,
            path=fields["path"],
            title=fields["title"],
            description=fields.get("description"),
            is_favorite=fields.get("is_favorite", False),
            created_at=fields.get("created_at")
            or datetime(2024, 1, 1, tzinfo=timezone.utc),
            tags=[self._tag(tag_id) for tag_id in dict.fromkeys(tag_ids)],
        )
        self.bookmarks.append(bookmark)
        return bookmark

    def replace_bookmark_tags(self, bookmark_id, tag_ids):
        self.writes.append(("replace_bookmark_tags", bookmark_id))
        self._bookmark(bookmark_id).tags = [
            self._tag(tag_id) for tag_id in dict.fromkeys(tag_ids)
        ]

    def update_bookmark(self, bookmark_id, fields):
        self.writes.append(("update_bookmark", bookmark_id))
        bookmark = self._bookmark(bookmark_id)
        for key, value in fields.items():
            setattr(bookmark, key, value)

    def update_tag(self, tag_id, fields):
        self.writes.append(("update_tag", tag_id))
        tag = self._tag(tag_id)
        for key, value in fields.items():
            setattr(tag, key, value)

    def list_bookmarks(self, owner_id):
        rows = [b for b in self.bookmarks if b.user_id == owner_id]
        return sorted(rows, key=lambda b: (b.created_at, b.id))

    def list_tags(self, owner_id):
        rows = [t for t in self.tags if t.user_id == owner_id]
        return sorted(rows, key=lambda t: t.name)


SAMPLE_CSV = (
    "path,title,description,isFavorite,tags,createdAt\n"
    'https://a.com,A,,true,"x,y",2024-01-01T00:00:00Z\n'
    ",Missing,,false,,\n"
    "/home/me/notes,Notes,Local notes,false,y,\n"
)


def _import(repository, csv_text=SAMPLE_CSV, kind=KIND_BOOKMARKS, **kwargs):
    return reconcile_import(
        csv_text, kind, owner_id=OWNER, repository=repository, **kwargs
    )


def test_import_creates_bookmarks_and_reports_row_errors():
    repository = MemoryRepository()

    result = _import(repository)

    assert result.imported == 2
    assert result.skipped == 0
    assert result.errors == ["line 3: path and title are required"]
    assert result.tags_created == ["x", "y"]

    first = repository.find_bookmark_by_owner_and_path(OWNER, "https://a.com")
    assert first.is_favorite is True
    assert [tag.name for tag in first.tags] == ["x", "y"]
    assert first.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert first.description is None
    assert len(repository.tags) == 2


def test_second_import_in_skip_mode_is_idempotent():
    repository = MemoryRepository()
    _import(repository)
    writes_before = list(repository.writes)

    result = _import(repository)

    assert result.imported == 0
    assert result.skipped == 2
    assert result.tags_created == []
    assert [row["reason"] for row in result.preview.to_skip] == [
        "already exists",
        "already exists",
    ]
    assert repository.writes == writes_before


def test_update_mode_overwrites_fields_and_tags():
    repository = MemoryRepository()
    _import(repository)

    csv_text = (
        "path,title,description,isFavorite,tags\n"
        "https://a.com,A renamed,New text,false,z\n"
    )
    result = _import(repository, csv_text, mode=MODE_UPDATE)

    assert result.updated == 1
    assert result.tags_created == ["z"]
    bookmark = repository.find_bookmark_by_owner_and_path(OWNER, "https://a.com")
    assert bookmark.title == "A renamed"
    assert bookmark.description == "New text"
    assert bookmark.is_favorite is False
    assert [tag.name for tag in bookmark.tags] == ["z"]
    assert result.preview.to_update == [{"path": "https://a.com", "title": "A renamed"}]


def test_duplicate_mode_always_creates():
    repository = MemoryRepository()
    _import(repository)

    result = _import(repository, mode=MODE_DUPLICATE)

    assert result.imported == 2
    assert result.skipped == 0
    assert result.tags_created == []
    paths = [b.path for b in repository.bookmarks]
    assert paths.count("https://a.com") == 2


def test_preview_matches_commit_and_writes_nothing():
    csv_text = (
        "path,title,tags\n"
        "https://a.com,A,new\n"
        "https://a.com,A again,new\n"
        "/srv/data,Data,other\n"
    )
    preview_repo = MemoryRepository()
    commit_repo = MemoryRepository()

    preview = _import(preview_repo, csv_text, preview=True)
    committed = _import(commit_repo, csv_text)

    assert preview_repo.writes == []
    assert preview.as_dict() == committed.as_dict()
    assert preview.imported == 2
    assert preview.skipped == 1
    assert preview.tags_created == ["new", "other"]


def test_preview_in_update_mode_reports_new_tags():
    repository = MemoryRepository()
    _import(repository)
    writes_before = list(repository.writes)

    csv_text = "path,title,tags\nhttps://a.com,A,fresh\n"
    result = _import(repository, csv_text, preview=True, mode=MODE_UPDATE)

    assert result.updated == 1
    assert result.tags_created == ["fresh"]
    assert repository.writes == writes_before


def test_tags_created_lists_each_name_once():
    csv_text = "path,title,tags\n/a,A,\"n1,n2\"\n/b,B,\"n2,n1,n3\"\n"
    repository = MemoryRepository()

    result = _import(repository, csv_text)

    assert result.tags_created == ["n1", "n2", "n3"]
    assert len(repository.tags) == 3


def test_row_validation_rejects_bad_paths_and_long_fields():
    csv_text = (
        "path,title,description,tags\n"
        "relative/x,Bad path,,\n"
        f"/ok,{'t' * 201},,\n"
        f"/ok,Long description,{'d' * 1001},\n"
        f"/ok,Long tag,,{'g' * 51}\n"
        "/ok,Fine,,\n"
    )
    repository = MemoryRepository()

    result = _import(repository, csv_text)

    assert result.imported == 1
    assert result.errors == [
        "line 2: path format is invalid",
        "line 3: title must be 200 characters or fewer",
        "line 4: description must be 1000 characters or fewer",
        "line 5: tag names must be 50 characters or fewer",
    ]
    assert repository.tags == []


def test_row_failures_are_reported_and_processing_continues():
    repository = MemoryRepository()

    def broken(owner_id, fields, tag_ids):
        raise RuntimeError("disk full")

    repository.create_bookmark = broken
    result = _import(repository, "path,title\n/a,A\n")

    assert result.imported == 0
    assert result.errors == ["line 2: disk full"]


def test_export_then_import_round_trips():
    source = MemoryRepository()
    _import(source)
    exported = build_export_csv(KIND_BOOKMARKS, OWNER, source)

    target = MemoryRepository()
    result = _import(target, exported)

    assert result.imported == 2
    assert result.errors == []
    assert [
        (b.path, b.title, b.description, b.is_favorite, [t.name for t in b.tags])
        for b in target.list_bookmarks(OWNER)
    ] == [
        (b.path, b.title, b.description, b.is_favorite, [t.name for t in b.tags])
        for b in source.list_bookmarks(OWNER)
    ]


def test_bookmark_export_format():
    repository = MemoryRepository()
    _import(repository)

    lines = build_export_csv(KIND_BOOKMARKS, OWNER, repository).split("\n")

    assert lines[0] == "path,title,description,isFavorite,tags,createdAt"
    assert lines[1] == 'https://a.com,A,,true,"x,y",2024-01-01T00:00:00.000Z'
    assert lines[2].startswith("/home/me/notes,Notes,Local notes,false,y,")


def test_empty_export_is_header_only():
    repository = MemoryRepository()

    assert build_export_csv(KIND_TAGS, OWNER, repository) == "name,isFavorite"


def test_tag_import_skip_and_update():
    repository = MemoryRepository()
    csv_text = "name,isFavorite\nwork,true\nhome,false\n,true\n"

    first = _import(repository, csv_text, kind=KIND_TAGS)
    assert first.imported == 2
    assert first.errors == ["line 4: name is required"]
    assert first.tags_created == []

    second = _import(repository, "name,isFavorite\nwork,false\n", kind=KIND_TAGS)
    assert second.skipped == 1
    assert second.preview.to_skip == [
        {"path": "", "title": "work", "reason": "already exists"}
    ]

    third = _import(
        repository, "name,isFavorite\nwork,false\n", kind=KIND_TAGS, mode=MODE_UPDATE
    )
    assert third.updated == 1
    assert repository.find_tag_by_owner_and_name(OWNER, "work").is_favorite is False

    assert build_export_csv(KIND_TAGS, OWNER, repository) == (
        "name,isFavorite\nhome,false\nwork,false"
    )


def test_tag_import_rejects_duplicate_mode():
    with pytest.raises(ImportOptionError):
        _import(MemoryRepository(), "name\nwork\n", kind=KIND_TAGS, mode=MODE_DUPLICATE)


def test_unknown_kind_is_rejected():
    with pytest.raises(ImportOptionError):
        _import(MemoryRepository(), "name\nwork\n", kind="notes")


def test_non_text_payload_is_rejected():
    with pytest.raises(ImportPayloadError):
        _import(MemoryRepository(), b"path,title\n/a,A\n")


def test_header_only_payload_imports_nothing():
    result = _import(MemoryRepository(), "path,title,tags")

    assert result.as_dict() == {
        "imported": 0,
        "updated": 0,
        "skipped": 0,
        "errors": [],
        "tagsCreated": [],
        "preview": {"toImport": [], "toUpdate": [], "toSkip": []},
    }


def test_out_of_range_created_at_falls_back_to_default():
    repository = MemoryRepository()
    csv_text = "path,title,createdAt\n/a,A,0001-01-01T00:00:00+01:00\n"

    result = _import(repository, csv_text)

    assert result.imported == 1
    assert result.errors == []
    bookmark = repository.find_bookmark_by_owner_and_path(OWNER, "/a")
    assert bookmark.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("mode", [MODE_SKIP, MODE_UPDATE])
def test_tag_preview_matches_commit_for_repeated_names(mode):
    csv_text = "name,isFavorite\nwork,true\nwork,false\n"
    preview_repo = MemoryRepository()
    commit_repo = MemoryRepository()

    preview = _import(preview_repo, csv_text, kind=KIND_TAGS, preview=True, mode=mode)
    committed = _import(commit_repo, csv_text, kind=KIND_TAGS, mode=mode)

    assert preview_repo.writes == []
    assert preview.as_dict() == committed.as_dict()
    assert preview.imported == 1
    if mode == MODE_UPDATE:
        assert preview.updated == 1
        work = commit_repo.find_tag_by_owner_and_name(OWNER, "work")
        assert work.is_favorite is False
    else:
        assert preview.skipped == 1
