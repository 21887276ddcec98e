import io

import pytest
from openpyxl import load_workbook

from visit_export.images import encode_jpeg_thumbnail
from visit_export.records import SubmissionRecord
from visit_export.workbook import (
    PHOTO_BLOCK_ROWS,
    PHOTO_GRID_ROWS,
    PRIORITY_COLORS,
    build_submission_workbook,
    priority_fill,
)


def _load(built):
    return load_workbook(io.BytesIO(built.data)).active


def _row_of(ws, label):
    for row in ws.iter_rows(min_col=1, max_col=1):
        if row[0].value == label:
            return row[0].row
    raise AssertionError("label {0!r} not found".format(label))


def test_priority_fill_is_a_pure_function():
    assert priority_fill(1).start_color.rgb == "FFEF4444"
    assert priority_fill(2).start_color.rgb == "FFF59E0B"
    assert priority_fill(3).start_color.rgb == "FF22C55E"
    assert priority_fill(2) == priority_fill(2)
    for value in (None, 0, 4, -1, True, "1"):
        assert priority_fill(value) is None


def test_layout_without_photos_is_still_valid(submission_row):
    submission_row["priority_level"] = None
    record = SubmissionRecord.from_row(submission_row)

    built = build_submission_workbook(record, {})
    ws = _load(built)

    assert ws.title == "submission"
    assert ws["A1"].value == "STORE 12"
    assert "A1:B1" in {str(rng) for rng in ws.merged_cells.ranges}
    labels = [ws.cell(row, 1).value for row in range(2, 2 + len(record.field_rows()))]
    assert labels == [label for label, _ in record.field_rows()]
    assert ws.cell(_row_of(ws, "TAGS"), 2).value == "promo, endcap"
    assert ws.cell(_row_of(ws, "PRIORITY LEVEL"), 2).fill.fill_type is None

    photos_row = _row_of(ws, "PHOTOS")
    assert photos_row == 2 + len(record.field_rows()) + 1
    assert built.photo_top_row == photos_row + 1
    assert built.image_slots == []
    assert ws._images == []
    assert ws.column_dimensions["A"].width == 44
    last_grid_row = built.photo_top_row + PHOTO_GRID_ROWS - 1
    assert ws.cell(last_grid_row, 2).border.bottom.style == "thin"


def test_priority_one_with_two_photos(submission_row, jpeg_bytes):
    record = SubmissionRecord.from_row(submission_row)
    assets = {
        0: encode_jpeg_thumbnail(jpeg_bytes, 260, 55),
        1: encode_jpeg_thumbnail(jpeg_bytes, 260, 55),
    }

    built = build_submission_workbook(record, assets)
    ws = _load(built)

    priority_cell = ws.cell(_row_of(ws, "PRIORITY LEVEL"), 2)
    assert priority_cell.value == "1"
    assert priority_cell.fill.start_color.rgb == PRIORITY_COLORS[1]

    assert built.image_slots == [0, 1]
    assert len(ws._images) == 2
    anchors = sorted((img.anchor._from.col, img.anchor._from.row) for img in ws._images)
    top = built.photo_top_row - 1
    assert anchors == [(0, top), (1, top)]


def test_third_slot_starts_second_block(submission_row, jpeg_bytes):
    record = SubmissionRecord.from_row(submission_row)
    built = build_submission_workbook(record, {2: encode_jpeg_thumbnail(jpeg_bytes, 260, 55)})
    ws = _load(built)

    (image,) = ws._images
    assert image.anchor._from.col == 0
    assert image.anchor._from.row == built.photo_top_row - 1 + PHOTO_BLOCK_ROWS
    assert image.anchor.to.row == built.photo_top_row - 1 + 2 * PHOTO_BLOCK_ROWS


def test_file_name_comes_from_record(submission_row):
    built = build_submission_workbook(SubmissionRecord.from_row(submission_row), {})
    assert built.file_name == "Main-St-5-sub-42.xlsx"
    assert built.mime == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.mark.parametrize("stored,shown", [(2.9, "2.9"), ("1.5", "1.5"), (True, "true")])
def test_non_integral_priority_is_shown_without_fill(submission_row, stored, shown):
    submission_row["priority_level"] = stored
    record = SubmissionRecord.from_row(submission_row)

    ws = _load(build_submission_workbook(record, {}))

    priority_cell = ws.cell(_row_of(ws, "PRIORITY LEVEL"), 2)
    assert priority_cell.value == shown
    assert priority_cell.fill.fill_type is None


def test_whole_number_floats_are_written_without_decimals(submission_row):
    submission_row.update(price_per_unit=3.0, on_shelf=14.0)
    ws = _load(build_submission_workbook(SubmissionRecord.from_row(submission_row), {}))

    assert ws.cell(_row_of(ws, "PRICE PER UNIT"), 2).value == "3"
    assert ws.cell(_row_of(ws, "FACES ON SHELF"), 2).value == "14"
