from shiori.services.csv_format import build_csv, escape_csv, parse_csv, parse_csv_line


def test_escape_csv_quotes_only_when_needed():
    assert escape_csv("plain") == "plain"
    assert escape_csv("a,b") == '"a,b"'
    assert escape_csv('say "hi"') == '"say ""hi"""'
    assert escape_csv("two\nlines") == '"two\nlines"'
    assert escape_csv(None) == ""
    assert escape_csv("") == ""


def test_parse_csv_line_handles_quotes_and_empty_fields():
    assert parse_csv_line('a,"b,c",,"d ""e"""') == ["a", "b,c", "", 'd "e"']
    assert parse_csv_line("") == [""]
    assert parse_csv_line("x,") == ["x", ""]


def test_parse_csv_maps_rows_to_trimmed_headers():
    content = ' path , title ,tags\r\n/a, A ,"x,y"\r\n/b,B\r\n'
    rows = parse_csv(content)
    assert rows == [
        {"path": "/a", "title": "A", "tags": "x,y"},
        {"path": "/b", "title": "B", "tags": ""},
    ]


def test_parse_csv_needs_a_data_line():
    assert parse_csv("") == []
    assert parse_csv("path,title") == []
    assert parse_csv("\n\npath,title\n\n") == []


def test_parse_csv_ignores_extra_values():
    rows = parse_csv("name\nwork,extra")
    assert rows == [{"name": "work"}]


def test_build_csv_joins_without_trailing_newline():
    text = build_csv(("name", "isFavorite"), [["work", "true"], ['"a,b"', "false"]])
    assert text == 'name,isFavorite\nwork,true\n"a,b",false'


def test_escaped_values_parse_back():
    values = ["plain", "a,b", 'quote "q"', ""]
    line = ",".join(escape_csv(value) for value in values)
    assert parse_csv_line(line) == values


def test_parse_csv_drops_leading_byte_order_mark():
    rows = parse_csv("\ufeffpath,title\n/a,A\n")

    assert rows == [{"path": "/a", "title": "A"}]
