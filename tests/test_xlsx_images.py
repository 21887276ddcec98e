import io
import zipfile

import pytest

from visit_export.xlsx_images import (
    clamp,
    extract_cell_images,
    first_sheet_path,
    guess_image_mime,
)

ROWS = [["Store", "Photo"], ["Main St", ""], ["Oak Ave", ""], ["Pine Rd", ""]]


@pytest.fixture
def three_image_xlsx(xlsx_factory, image_factory):
    images = [
        ("B2", image_factory("PNG", (1200, 600), color=(255, 0, 0))),
        ("B3", image_factory("PNG", (300, 300), color=(0, 255, 0))),
        ("B4", image_factory("PNG", (64, 64), color=(0, 0, 255))),
    ]
    return xlsx_factory(ROWS, images)


def _replace_media(xlsx_bytes, payload):
    src = zipfile.ZipFile(io.BytesIO(xlsx_bytes))
    output = io.BytesIO()
    with zipfile.ZipFile(output, "w") as dst:
        for info in src.infolist():
            data = src.read(info.filename)
            if info.filename.startswith("xl/media/"):
                data = payload
            dst.writestr(info, data)
    return output.getvalue()


def test_max_images_caps_included_count(three_image_xlsx):
    result = extract_cell_images(three_image_xlsx, max_images=2)

    assert (result.included, result.omitted) == (2, 1)
    assert result.omitted_bytes > 0
    assert sorted(result.images_by_cell) == ["1:1", "2:1"]


def test_all_images_fit_default_budget(three_image_xlsx):
    result = extract_cell_images(three_image_xlsx)

    assert (result.included, result.omitted) == (3, 0)
    (image,) = result.images_by_cell["1:1"]
    assert image.mime == "image/jpeg"
    assert image.data_uri.startswith("data:image/jpeg;base64,")


def test_thumbnails_are_bounded(three_image_xlsx):
    from PIL import Image
    import base64

    result = extract_cell_images(three_image_xlsx, thumb_max_dim=200)
    encoded = result.images_by_cell["1:1"][0].data_uri.split(",", 1)[1]
    with Image.open(io.BytesIO(base64.b64decode(encoded))) as img:
        assert max(img.size) == 200


@pytest.mark.parametrize("max_images,max_bytes", [(1, 6_000_000), (3, 1), (2, 1500), (50, 0)])
def test_budget_accounting(three_image_xlsx, max_images, max_bytes):
    result = extract_cell_images(three_image_xlsx, max_images=max_images, max_total_bytes=max_bytes)
    included_bytes = sum(img.bytes for images in result.images_by_cell.values() for img in images)

    if max_bytes == 0:
        assert result.candidates == 0
    else:
        assert result.candidates == 3
    assert result.included <= max_images
    assert included_bytes <= max_bytes


def test_anchors_outside_the_bound_are_not_candidates(xlsx_factory, image_factory):
    data = xlsx_factory(ROWS, [("A2", image_factory("PNG")), ("A80", image_factory("PNG")), ("Z2", image_factory("PNG"))])

    result = extract_cell_images(data, max_rows=10, max_cols=5)

    assert result.candidates == 1
    assert list(result.images_by_cell) == ["1:0"]


def test_unrecognized_media_is_passed_through(three_image_xlsx):
    broken = _replace_media(three_image_xlsx, b"\x00not-really-a-png")

    result = extract_cell_images(broken)

    assert result.included == 3
    image = result.images_by_cell["1:1"][0]
    assert image.mime == "image/png"
    assert image.bytes == len(b"\x00not-really-a-png")


def test_workbook_without_drawings(xlsx_factory):
    result = extract_cell_images(xlsx_factory(ROWS))
    assert result.candidates == 0
    assert result.images_by_cell == {}


def test_not_a_zip():
    assert extract_cell_images(b"plain,csv\n1,2\n").candidates == 0


def test_first_sheet_path(three_image_xlsx):
    with zipfile.ZipFile(io.BytesIO(three_image_xlsx)) as archive:
        assert first_sheet_path(archive) == "xl/worksheets/sheet1.xml"


def test_guess_image_mime():
    assert guess_image_mime("xl/media/image1.JPEG") == "image/jpeg"
    assert guess_image_mime("xl/media/image1.emf") == "application/octet-stream"


def test_clamp():
    assert clamp("12", 5, 60) == 12
    assert clamp(1000, 5, 500) == 500
    assert clamp("lots", 5, 500) == 5
