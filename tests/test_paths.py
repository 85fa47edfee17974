import pytest

from shiori.services.paths import (
    PATH_TYPE_FILE,
    PATH_TYPE_NETWORK,
    PATH_TYPE_RULES,
    PATH_TYPE_URL,
    classify_path,
    validate_path,
)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("https://x.com", PATH_TYPE_URL),
        ("HTTP://EXAMPLE.COM/a", PATH_TYPE_URL),
        ("ftp://x.com/f", PATH_TYPE_NETWORK),
        ("SMB://nas/share", PATH_TYPE_NETWORK),
        ("sftp://host/home", PATH_TYPE_NETWORK),
        ("file:///C:/a", PATH_TYPE_FILE),
        ("file://srv/share", PATH_TYPE_NETWORK),
        ("\\\\srv\\share", PATH_TYPE_NETWORK),
        ("\\\\?\\UNC\\srv\\share", PATH_TYPE_NETWORK),
        ("\\\\?\\unc\\srv\\share", PATH_TYPE_NETWORK),
        ("\\\\.\\PhysicalDrive0", PATH_TYPE_FILE),
        ("\\\\?\\C:\\very\\long", PATH_TYPE_FILE),
        ("C:\\Users\\x", PATH_TYPE_FILE),
        ("d:/projects", PATH_TYPE_FILE),
        ("/home/x", PATH_TYPE_FILE),
        ("~/.config", PATH_TYPE_FILE),
        ("vscode://open", PATH_TYPE_URL),
        ("obsidian://open?vault=notes", PATH_TYPE_URL),
        ("relative/x", PATH_TYPE_FILE),
        ("", PATH_TYPE_FILE),
    ],
)
def test_classify_path(path, expected):
    assert classify_path(path) == expected


def test_classify_path_handles_none():
    assert classify_path(None) == PATH_TYPE_FILE


def test_rule_table_puts_web_before_custom_schemes():
    results = [path_type for _, path_type in PATH_TYPE_RULES]
    assert results[0] == PATH_TYPE_URL
    assert results[-1] == PATH_TYPE_URL
    assert len(PATH_TYPE_RULES) == 11


@pytest.mark.parametrize(
    "path",
    [
        "https://example.com",
        "vscode://file/x",
        "git+ssh://host/repo",
        "\\\\server\\share\\dir",
        "\\\\?\\UNC\\server\\share",
        "\\\\.\\COM1",
        "\\\\?\\D:\\data",
        "C:\\Windows",
        "c:/Windows",
        "/usr/local",
        "~",
    ],
)
def test_validate_path_accepts_known_forms(path):
    assert validate_path(path) is True


@pytest.mark.parametrize(
    "path",
    ["", None, "relative/x", "notes.txt", "1http://x", "C:relative", "\\\\server"],
)
def test_validate_path_rejects_unrecognised_forms(path):
    assert validate_path(path) is False
