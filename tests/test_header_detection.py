from app.domain.imports.header_detection import (
    build_header_labels,
    count_keyword_matches,
    detect_header_row,
)
from app.domain.imports.processors.spreadsheet_processor import build_parsed_sheet


def test_header_found_after_export_title():
    grid = [["Export 2024"], ["Name", "Email", "Phone"], ["Jane", "j@x.com", "555"]]

    result = detect_header_row(grid)

    assert result.header_row_index == 1
    assert result.headers == ["Name", "Email", "Phone"]
    assert result.match_count == 3

    sheet = build_parsed_sheet("Sheet1", grid)
    assert sheet.total_rows == 1
    assert sheet.rows == [{"Name": "Jane", "Email": "j@x.com", "Phone": "555"}]


def test_equal_match_counts_keep_the_earliest_row():
    grid = [["Name", "Email"], ["Phone", "Address"], ["Jane", "j@x.com"]]

    assert detect_header_row(grid).header_row_index == 0


def test_later_row_wins_only_on_strictly_more_matches():
    grid = [["Driver list"], ["Name", "Notes"], ["Name", "Email", "Phone"]]

    assert detect_header_row(grid).header_row_index == 2


def test_no_matches_falls_back_to_first_row_with_generated_labels():
    grid = [["foo", None, "bar"], ["1", "2", "3"]]

    result = detect_header_row(grid)

    assert result.header_row_index == 0
    assert result.match_count == 0
    assert result.headers == ["foo", "Column_2", "bar"]


def test_rows_beyond_scan_limit_are_ignored():
    grid = [["x"]] * 10 + [["Name", "Email", "Phone"]]

    assert detect_header_row(grid, max_scan_rows=10).header_row_index == 0
    assert detect_header_row(grid, max_scan_rows=11).header_row_index == 10


def test_blank_rows_count_as_header_candidates():
    grid = [[], ["Name", "Phone"], [], ["Jane", "555"]]

    sheet = build_parsed_sheet("Sheet1", grid)

    assert sheet.header_row_index == 1
    assert sheet.rows == [{"Name": "Jane", "Phone": "555"}]


def test_keyword_matching_uses_letters_only_lowercase_text():
    row = ["E-mail Address", "PHONE #", 42, None, "Zip"]

    assert count_keyword_matches(row) == 2


def test_header_labels_are_trimmed():
    assert build_header_labels(["  Name ", "", "Phone"]) == ["Name", "Column_2", "Phone"]


def test_repeated_header_labels_get_numbered_suffixes():
    labels = build_header_labels(["Phone", "Name", "Phone", "Phone_2", "Phone"])

    assert labels == ["Phone", "Name", "Phone_3", "Phone_2", "Phone_4"]
