from __future__ import annotations

from flask import jsonify

from shiori.services.common import clamp_int, parse_iso_datetime
from shiori.services.paths import PATH_MAX_LENGTH, validate_path

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
TAG_NAME_MAX_LENGTH = 50
TOKEN_NAME_MAX_LENGTH = 100
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8


class ValidationError(Exception):
    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


def api_error(code: str, message: str, status_code: int, details=None):
    payload = {"code": code, "message": message}
    if details:
        payload["details"] = details
    return jsonify({"error": payload}), status_code


class _Collector:
    def __init__(self):
        self.details: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.details.append({"field": field, "message": message})

    def raise_if_any(self, message="invalid input") -> None:
        if self.details:
            raise ValidationError(message, self.details)


def _string(payload: dict, field: str, errors: _Collector) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.add(field, f"{field} must be a string")
        return None
    return value


def _tag_list(payload: dict, errors: _Collector) -> list[str] | None:
    if "tags" not in payload or payload.get("tags") is None:
        return None
    raw = payload.get("tags")
    if not isinstance(raw, list):
        errors.add("tags", "tags must be a list of names")
        return None
    names: list[str] = []
    for index, item in enumerate(raw):
        if not isinstance(item, str):
            errors.add(f"tags.{index}", "tag name must be a string")
            continue
        name = item.strip()
        if not name or len(name) > TAG_NAME_MAX_LENGTH:
            errors.add(
                f"tags.{index}",
                f"tag name must be 1 to {TAG_NAME_MAX_LENGTH} characters",
            )
            continue
        if name not in names:
            names.append(name)
    return names


def validate_bookmark_payload(payload: dict, partial: bool = False) -> dict:
    """Check a bookmark create/update body and return model field values.

    With ``partial`` only the keys present in the payload are validated and
    returned.
    """
    errors = _Collector()
    data: dict = {}

    if not partial or "path" in payload:
        path = _string(payload, "path", errors)
        if not path:
            errors.add("path", "path is required")
        elif len(path) > PATH_MAX_LENGTH:
            errors.add("path", f"path must be {PATH_MAX_LENGTH} characters or fewer")
        elif not validate_path(path):
            errors.add("path", "path format is invalid")
        else:
            data["path"] = path

    if not partial or "title" in payload:
        title = _string(payload, "title", errors)
        if not title:
            errors.add("title", "title is required")
        elif len(title) > TITLE_MAX_LENGTH:
            errors.add(
                "title", f"title must be {TITLE_MAX_LENGTH} characters or fewer"
            )
        else:
            data["title"] = title

    if "description" in payload:
        description = _string(payload, "description", errors)
        if description and len(description) > DESCRIPTION_MAX_LENGTH:
            errors.add(
                "description",
                f"description must be {DESCRIPTION_MAX_LENGTH} characters or fewer",
            )
        else:
            data["description"] = description or None

    if "isFavorite" in payload:
        if not isinstance(payload["isFavorite"], bool):
            errors.add("isFavorite", "isFavorite must be a boolean")
        else:
            data["is_favorite"] = payload["isFavorite"]
    elif not partial:
        data["is_favorite"] = False

    tags = _tag_list(payload, errors)
    if tags is not None:
        data["tags"] = tags
    elif not partial:
        data["tags"] = []

    errors.raise_if_any()
    return data


def validate_tag_payload(payload: dict, partial: bool = False) -> dict:
    errors = _Collector()
    data: dict = {}

    if not partial or "name" in payload:
        name = (_string(payload, "name", errors) or "").strip()
        if not name:
            errors.add("name", "name is required")
        elif len(name) > TAG_NAME_MAX_LENGTH:
            errors.add(
                "name", f"name must be {TAG_NAME_MAX_LENGTH} characters or fewer"
            )
        else:
            data["name"] = name

    if "isFavorite" in payload:
        if not isinstance(payload["isFavorite"], bool):
            errors.add("isFavorite", "isFavorite must be a boolean")
        else:
            data["is_favorite"] = payload["isFavorite"]
    elif not partial:
        data["is_favorite"] = False

    errors.raise_if_any()
    return data


def validate_token_payload(payload: dict) -> dict:
    errors = _Collector()
    data: dict = {}

    name = (_string(payload, "name", errors) or "").strip()
    if not name:
        errors.add("name", "name is required")
    elif len(name) > TOKEN_NAME_MAX_LENGTH:
        errors.add("name", f"name must be {TOKEN_NAME_MAX_LENGTH} characters or fewer")
    else:
        data["name"] = name

    data["expires_at"] = None
    raw_expires = _string(payload, "expiresAt", errors)
    if raw_expires:
        try:
            data["expires_at"] = parse_iso_datetime(raw_expires)
        except ValueError:
            errors.add("expiresAt", "expiresAt must be an ISO-8601 datetime")

    errors.raise_if_any()
    return data


def _username_char(char: str) -> bool:
    return char.isascii() and (char.isalnum() or char in "_-")


def validate_registration_payload(payload: dict) -> dict:
    errors = _Collector()

    username = (_string(payload, "username", errors) or "").strip()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        errors.add(
            "username",
            f"username must be {USERNAME_MIN_LENGTH} to "
            f"{USERNAME_MAX_LENGTH} characters",
        )
    elif not all(_username_char(char) for char in username):
        errors.add("username", "username may only contain letters, digits, - and _")

    email = (_string(payload, "email", errors) or "").strip() or None
    if email is not None and ("@" not in email or email.startswith("@")):
        errors.add("email", "email address is invalid")

    password = _string(payload, "password", errors) or ""
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.add(
            "password",
            f"password must be at least {PASSWORD_MIN_LENGTH} characters",
        )
    elif not (
        any(char.islower() for char in password)
        and any(char.isupper() for char in password)
        and any(char.isdigit() for char in password)
    ):
        errors.add(
            "password", "password must contain upper case, lower case and a digit"
        )

    errors.raise_if_any()
    return {"username": username, "email": email, "password": password}


def validate_page_args(args, default_limit: int = 20, max_limit: int = 100):
    page = clamp_int(args.get("page"), 1, 1)
    limit = clamp_int(args.get("limit"), default_limit, 1, max_limit)
    return page, limit


def validate_choice(value, choices, field: str, default: str) -> str:
    if value is None or value == "":
        return default
    if value not in choices:
        allowed = ", ".join(choices)
        raise ValidationError(
            "invalid query parameters",
            [{"field": field, "message": f"{field} must be one of {allowed}"}],
        )
    return value
