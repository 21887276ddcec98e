from __future__ import annotations

import base64
import io
import logging
import posixpath
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .images import IMAGE_ERRORS, encode_jpeg_thumbnail

logger = logging.getLogger(__name__)

NS = {
    "main": "http://schemas.openxmlformats.org/spreadsheetml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "xdr": "http://schemas.openxmlformats.org/drawingml/2006/spreadsheetDrawing",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
}
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
R_ID = "{%s}id" % NS["r"]
R_EMBED = "{%s}embed" % NS["r"]

WORKBOOK_PATH = "xl/workbook.xml"
WORKBOOK_RELS_PATH = "xl/_rels/workbook.xml.rels"
DEFAULT_SHEET_PATH = "xl/worksheets/sheet1.xml"

THUMBNAIL_MIMES = {
    "image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif", "image/bmp",
}
MEDIA_MIMES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


def clamp(value, low, high, default=None):
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        number = low if default is None else default
    return max(low, min(high, number))


@dataclass
class EmbeddedImage:
    mime: str
    data_uri: str
    bytes: int


@dataclass
class CellImages:
    images_by_cell: Dict[str, List[EmbeddedImage]] = field(default_factory=dict)
    included: int = 0
    omitted: int = 0
    omitted_bytes: int = 0

    @property
    def candidates(self):
        return self.included + self.omitted

    def meta(self):
        return {
            "included": self.included,
            "omitted": self.omitted,
            "omitted_bytes": self.omitted_bytes,
        }


@dataclass
class AnchoredMedia:
    row: int
    col: int
    path: str
    data: bytes


def guess_image_mime(path) -> str:
    ext = posixpath.splitext((path or "").lower())[1]
    return MEDIA_MIMES.get(ext, "application/octet-stream")


def _xml_local_name(tag):
    if "}" in tag:
        return tag.rsplit("}", 1)[-1]
    return tag


def _resolve_zip_path(base_path, target):
    if not target:
        return None
    clean_target = target.replace("\\", "/")
    if clean_target.startswith("/"):
        return clean_target.lstrip("/")
    base_dir = posixpath.dirname(base_path)
    return posixpath.normpath(posixpath.join(base_dir, clean_target))


def _rels_path_for(part_path):
    return "{0}/_rels/{1}.rels".format(posixpath.dirname(part_path), posixpath.basename(part_path))


def _read_relationships(archive, rels_path):
    rels = {}
    if rels_path not in archive.namelist():
        return rels
    rel_root = ET.fromstring(archive.read(rels_path))
    for rel in rel_root.findall("{%s}Relationship" % REL_NS):
        rel_id = rel.attrib.get("Id")
        target = rel.attrib.get("Target")
        if rel_id and target:
            rels[rel_id] = target
    return rels


def first_sheet_path(archive) -> Optional[str]:
    names = archive.namelist()
    if WORKBOOK_PATH in names:
        wb_root = ET.fromstring(archive.read(WORKBOOK_PATH))
        workbook_rels = _read_relationships(archive, WORKBOOK_RELS_PATH)
        sheet = wb_root.find(".//main:sheets/main:sheet", NS)
        if sheet is not None:
            path = _resolve_zip_path(WORKBOOK_PATH, workbook_rels.get(sheet.attrib.get(R_ID)))
            if path and path in names:
                return path
    if DEFAULT_SHEET_PATH in names:
        return DEFAULT_SHEET_PATH
    return None


def _anchor_row_col(anchor) -> Tuple[Optional[int], Optional[int]]:
    """0-based (row, col) of an anchor's ``from`` marker."""
    from_node = None
    for child in anchor:
        if _xml_local_name(getattr(child, "tag", "")).lower() == "from":
            from_node = child
            break
    if from_node is None:
        return None, None

    row = None
    col = None
    for part in from_node:
        tag_name = _xml_local_name(part.tag).lower()
        text_value = (part.text or "").strip()
        try:
            if tag_name == "row":
                row = int(text_value)
            elif tag_name == "col":
                col = int(text_value)
        except ValueError:
            return None, None
    return row, col


def iter_anchored_media(archive, max_rows, max_cols):
    """Yield media anchored to the first sheet, within the row/col bound, in drawing order."""
    sheet_path = first_sheet_path(archive)
    if not sheet_path:
        return

    names = set(archive.namelist())
    sheet_root = ET.fromstring(archive.read(sheet_path))
    drawing_node = sheet_root.find("main:drawing", NS)
    if drawing_node is None:
        return
    sheet_rels = _read_relationships(archive, _rels_path_for(sheet_path))
    drawing_path = _resolve_zip_path(sheet_path, sheet_rels.get(drawing_node.attrib.get(R_ID)))
    if not drawing_path or drawing_path not in names:
        return

    drawing_root = ET.fromstring(archive.read(drawing_path))
    drawing_rels = _read_relationships(archive, _rels_path_for(drawing_path))

    anchors = drawing_root.findall("xdr:twoCellAnchor", NS) + drawing_root.findall("xdr:oneCellAnchor", NS)
    for anchor in anchors:
        row, col = _anchor_row_col(anchor)
        if row is None or col is None or row < 0 or col < 0:
            continue
        if row >= max_rows or col >= max_cols:
            continue

        blip = anchor.find(".//a:blip", NS)
        if blip is None:
            continue
        media_path = _resolve_zip_path(drawing_path, drawing_rels.get(blip.attrib.get(R_EMBED)))
        if not media_path or media_path not in names:
            continue
        data = archive.read(media_path)
        if not data:
            continue
        yield AnchoredMedia(row=row, col=col, path=media_path, data=data)


def make_thumbnail(data, mime, max_dim=900, quality=70) -> Tuple[bytes, str]:
    if mime.lower() not in THUMBNAIL_MIMES:
        return data, mime
    try:
        asset = encode_jpeg_thumbnail(data, clamp(max_dim, 64, 2048), clamp(quality, 20, 95))
    except IMAGE_ERRORS as exc:
        logger.debug("thumbnail skipped (%s), passing raw bytes through", exc)
        return data, mime
    return asset.data, "image/jpeg"


def extract_cell_images(xlsx_bytes, max_rows=60, max_cols=20, max_images=20,
                        max_total_bytes=6_000_000, thumb_max_dim=900, thumb_quality=70) -> CellImages:
    """Collect images anchored in the first sheet as data URIs keyed ``"{row}:{col}"``.

    Images past either cap are counted in ``omitted``/``omitted_bytes``; the byte cap
    is measured on the bytes actually embedded.
    """
    max_rows = clamp(max_rows, 5, 500)
    max_cols = clamp(max_cols, 5, 60)
    max_images = clamp(max_images, 0, 50)
    max_total_bytes = clamp(max_total_bytes, 0, 8_000_000)

    out = CellImages()
    if max_images == 0 or max_total_bytes == 0:
        return out

    try:
        archive = zipfile.ZipFile(io.BytesIO(xlsx_bytes), "r")
    except zipfile.BadZipFile as exc:
        logger.warning("workbook is not a zip package: %s", exc)
        return out

    total_bytes = 0
    with archive:
        try:
            media_items = list(iter_anchored_media(archive, max_rows, max_cols))
        except ET.ParseError as exc:
            logger.warning("could not read drawing parts: %s", exc)
            return out

        for item in media_items:
            data, mime = make_thumbnail(
                item.data, guess_image_mime(item.path), thumb_max_dim, thumb_quality
            )
            size = len(data)
            if out.included >= max_images or total_bytes + size > max_total_bytes:
                out.omitted += 1
                out.omitted_bytes += size
                continue
            key = "{0}:{1}".format(item.row, item.col)
            data_uri = "data:{0};base64,{1}".format(mime, base64.b64encode(data).decode("ascii"))
            out.images_by_cell.setdefault(key, []).append(
                EmbeddedImage(mime=mime, data_uri=data_uri, bytes=size)
            )
            out.included += 1
            total_bytes += size
    return out
