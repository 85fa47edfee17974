from __future__ import annotations

import re

PATH_TYPE_URL = "url"
PATH_TYPE_FILE = "file"
PATH_TYPE_NETWORK = "network"

PATH_TYPES = (PATH_TYPE_URL, PATH_TYPE_FILE, PATH_TYPE_NETWORK)

PATH_MAX_LENGTH = 2000

_GENERIC_URI = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)

_VALID_PATH_PATTERNS = (
    _GENERIC_URI,
    # \\server\share
    re.compile(r"^\\\\[^\\?]+\\[^\\]+"),
    # \\?\UNC\server\share
    re.compile(r"^\\\\\?\\UNC\\[^\\]+\\[^\\]+", re.IGNORECASE),
    # \\.\PhysicalDrive0
    re.compile(r"^\\\\\.\\"),
    # \\?\C:\very\long\path
    re.compile(r"^\\\\\?\\[a-z]:\\", re.IGNORECASE),
    re.compile(r"^[a-z]:[\\/]", re.IGNORECASE),
    re.compile(r"^/"),
    re.compile(r"^~"),
)

# Evaluated top to bottom; the first match decides. UNC and URI forms
# overlap, so the order is significant.
PATH_TYPE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^https?://", re.IGNORECASE), PATH_TYPE_URL),
    (
        re.compile(r"^(ftp|ftps|ssh|sftp|smb|dav|davs|nfs)://", re.IGNORECASE),
        PATH_TYPE_NETWORK,
    ),
    (re.compile(r"^file://[^/]", re.IGNORECASE), PATH_TYPE_NETWORK),
    (re.compile(r"^file://", re.IGNORECASE), PATH_TYPE_FILE),
    (re.compile(r"^\\\\[^?\\.]"), PATH_TYPE_NETWORK),
    (re.compile(r"^\\\\\?\\UNC\\", re.IGNORECASE), PATH_TYPE_NETWORK),
    (re.compile(r"^\\\\\.\\"), PATH_TYPE_FILE),
    (re.compile(r"^\\\\\?\\[a-z]:", re.IGNORECASE), PATH_TYPE_FILE),
    (re.compile(r"^[a-z]:[\\/]", re.IGNORECASE), PATH_TYPE_FILE),
    (re.compile(r"^[/~]"), PATH_TYPE_FILE),
    (_GENERIC_URI, PATH_TYPE_URL),
)


def validate_path(path: str | None) -> bool:
    if not path:
        return False
    return any(pattern.search(path) for pattern in _VALID_PATH_PATTERNS)


def classify_path(path: str | None) -> str:
    """Return ``url``, ``file`` or ``network`` for a bookmark target.

    Unrecognised input is treated as a local file reference.
    """
    value = path or ""
    for pattern, path_type in PATH_TYPE_RULES:
        if pattern.search(value):
            return path_type
    return PATH_TYPE_FILE
