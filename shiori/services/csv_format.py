from __future__ import annotations

from collections.abc import Iterable


def escape_csv(value) -> str:
    if value is None:
        return ""
    text = str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def parse_csv_line(line: str) -> list[str]:
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if in_quotes:
            if char == '"' and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 1
            elif char == '"':
                in_quotes = False
            else:
                current.append(char)
        elif char == '"':
            in_quotes = True
        elif char == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current))
    return fields


def parse_csv(content: str) -> list[dict[str, str]]:
    """Parse header + data lines into one mapping per data line.

    Lines are split before fields are tokenised, so a quoted value that
    contains a newline is not supported and will break row alignment.
    """
    content = content.removeprefix("\ufeff")
    lines = [line.rstrip("\r") for line in content.strip().split("\n")]
    if len(lines) < 2:
        return []

    headers = [header.strip() for header in parse_csv_line(lines[0])]
    rows: list[dict[str, str]] = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        row: dict[str, str] = {}
        for index, header in enumerate(headers):
            row[header] = values[index].strip() if index < len(values) else ""
        rows.append(row)
    return rows


def build_csv(header: Iterable[str], rows: Iterable[Iterable[str]]) -> str:
    lines = [",".join(header)]
    lines.extend(",".join(row) for row in rows)
    return "\n".join(lines)
