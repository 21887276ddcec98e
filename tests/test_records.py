from visit_export.records import (
    SubmissionRecord,
    has_image_extension,
    is_submission_id,
    normalize_priority,
    normalize_tags,
    normalize_text,
    safe_file_base,
    slot_cell,
)


def test_normalize_tags_is_idempotent_on_joined_strings():
    tags = normalize_tags(["promo", " endcap ", ""])
    assert tags == ["promo", "endcap"]
    assert normalize_tags(", ".join(tags)) == tags
    assert normalize_tags(", ".join(normalize_tags(", ".join(tags)))) == tags


def test_normalize_tags_json_string_matches_real_array():
    assert normalize_tags('["promo", "endcap"]') == normalize_tags(["promo", "endcap"])


def test_normalize_tags_edge_values():
    assert normalize_tags(None) == []
    assert normalize_tags("   ") == []
    assert normalize_tags(7) == ["7"]


def test_normalize_text_values():
    assert normalize_text(None) == ""
    assert normalize_text(True) == "true"
    assert normalize_text(2.5) == "2.5"
    assert normalize_text(3.0) == "3"
    assert normalize_text(14) == "14"
    assert normalize_text(["a", None, "b"]) == "a, b"
    assert normalize_text({"k": 1}) == '{"k": 1}'


def test_normalize_priority():
    assert normalize_priority("2") == 2
    assert normalize_priority(3.0) == 3
    assert normalize_priority("") is None
    assert normalize_priority("urgent") is None
    assert normalize_priority(2.9) is None
    assert normalize_priority("1.5") is None
    assert normalize_priority(" 3 ") == 3
    assert normalize_priority(True) is None
    assert normalize_priority(float("nan")) is None


def test_slot_cell_layout():
    assert [slot_cell(slot) for slot in range(6)] == [(0, 0), (1, 0), (0, 1), (1, 1), (0, 2), (1, 2)]


def test_safe_file_base():
    assert safe_file_base("Main St #5") == "Main-St-5"
    assert safe_file_base("") == "submission"
    assert safe_file_base("***") == "submission"


def test_has_image_extension_ignores_query():
    assert has_image_extension("team/sub/photo1.JPG?download=1")
    assert not has_image_extension("team/sub")


def test_from_row_reads_photo_slots(submission_row):
    submission_row.update(
        photo1_path="team-1/sub-42/photo1.jpg",
        photo2_url="https://cdn.example.com/p2.jpg",
        photo3_path="  ",
    )
    record = SubmissionRecord.from_row(submission_row)

    assert len(record.photos) == 6
    assert record.photos[0].path == "team-1/sub-42/photo1.jpg"
    assert record.photos[1].url == "https://cdn.example.com/p2.jpg"
    assert record.photos[2].is_empty
    assert record.tags == ("promo", "endcap")
    assert record.priority_level == 1
    assert record.price_per_unit == "2.5"


def test_from_row_legacy_photo_urls_fill_empty_slots(submission_row):
    submission_row.update(
        photo1_path="team-1/sub-42/photo1.jpg",
        photo_urls=["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"],
    )
    record = SubmissionRecord.from_row(submission_row)

    assert record.photos[0].url is None
    assert record.photos[1].url == "https://cdn.example.com/b.jpg"


def test_title_and_file_name(submission_row):
    record = SubmissionRecord.from_row(submission_row)
    assert record.title == "STORE 12"
    assert record.file_name == "Main-St-5-sub-42.xlsx"

    bare = SubmissionRecord.from_row({"id": "x1"})
    assert bare.title == "SUBMISSION"
    assert bare.file_name == "submission-x1.xlsx"


def test_field_rows_order(submission_row):
    labels = [label for label, _ in SubmissionRecord.from_row(submission_row).field_rows()]
    assert labels == [
        "DATE",
        "BRAND",
        "STORE LOCATION",
        "LOCATIONS",
        "CONDITIONS",
        "PRICE PER UNIT",
        "SHELF SPACE",
        "FACES ON SHELF",
        "TAGS",
        "NOTES",
        "PRIORITY LEVEL",
    ]


def test_from_row_keeps_stored_priority_text(submission_row):
    submission_row["priority_level"] = 2.9
    record = SubmissionRecord.from_row(submission_row)

    assert record.priority_level is None
    assert dict(record.field_rows())["PRIORITY LEVEL"] == "2.9"


def test_is_submission_id():
    assert is_submission_id("0b8f5c1e-3d4a-4f6b-9c2d-7e1a2b3c4d5e")
    assert not is_submission_id("sub-42")
    assert not is_submission_id("")
