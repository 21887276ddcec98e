"""Bounded HTML previews of CSV and XLSX attachments.

Other attachment types only get a signed URL back (plus an Office web
viewer link for Word and PowerPoint files).
"""

from __future__ import annotations

import datetime
import io
import logging
import re
import zipfile
from dataclasses import dataclass
from typing import List, Tuple
from urllib.parse import quote

import openpyxl
import requests
from openpyxl.utils.exceptions import InvalidFileException

from .backend import MESSAGE_TABLES
from .config import config_value
from .errors import (
    AttachmentUrlNotSupportedError,
    BadRequestError,
    ForbiddenError,
    MissingAttachmentError,
    NotFoundError,
    PreviewError,
    VisitExportError,
)
from .render import render_preview_html
from .retry import RetryPolicy, with_retry
from .storage_paths import looks_like_url, parse_storage_url, storage_hosts
from .xlsx_images import clamp, extract_cell_images

logger = logging.getLogger(__name__)

OFFICE_EMBED_URL = "https://view.officeapps.live.com/op/embed.aspx?src="
TABULAR_TYPES = ("excel", "csv")
OFFICE_TYPES = ("word", "powerpoint")

ATTACHMENT_TYPE_ALIASES = {
    "csv": "csv",
    "excel": "excel",
    "xlsx": "excel",
    "spreadsheet": "excel",
    "image": "image",
    "photo": "image",
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "pdf": "pdf",
    "word": "word",
    "doc": "word",
    "docx": "word",
    "powerpoint": "powerpoint",
    "ppt": "powerpoint",
    "pptx": "powerpoint",
}


@dataclass(frozen=True)
class AttachmentRef:
    team_id: str
    attachment_type: str
    bucket: str
    path: str

    @property
    def title(self):
        return "Attachment ({0})".format(self.attachment_type.upper())


def normalize_attachment_type(value) -> str:
    text = str(value or "").strip().lower()
    return ATTACHMENT_TYPE_ALIASES.get(text, "file")


def default_bucket(attachment_type, config=None):
    if attachment_type == "csv":
        return config_value(config, "CSV_BUCKET")
    return config_value(config, "CHAT_BUCKET")


def _text(body, key):
    value = body.get(key)
    return "" if value is None else str(value).strip()


def resolve_attachment_ref(backend, body, config=None) -> AttachmentRef:
    kind = _text(body, "kind")
    message_id = _text(body, "id")

    if kind and message_id:
        if kind not in MESSAGE_TABLES:
            raise BadRequestError("invalid_kind", code="invalid_kind")
        message = backend.get_message(kind, message_id)
        if message is None:
            raise NotFoundError("message_not_found", code="message_not_found")
        attachment_type = normalize_attachment_type(message.attachment_type)
        raw_path = (message.attachment or "").strip()
        if not raw_path:
            raise MissingAttachmentError()
        if looks_like_url(raw_path):
            parsed = parse_storage_url(raw_path, storage_hosts(config))
            if parsed is None:
                raise AttachmentUrlNotSupportedError()
            bucket, path = parsed
        else:
            bucket, path = default_bucket(attachment_type, config), raw_path
        return AttachmentRef(
            team_id=str(message.team_id or ""),
            attachment_type=attachment_type,
            bucket=bucket,
            path=path,
        )

    team_id = _text(body, "team_id")
    path = _text(body, "path")
    attachment_type = normalize_attachment_type(body.get("attachment_type") or "file")
    bucket = _text(body, "bucket") or default_bucket(attachment_type, config)
    if not team_id:
        raise BadRequestError("team_id required")
    if not path:
        raise BadRequestError("path required")
    require_team_scope(team_id, bucket, path, config)
    return AttachmentRef(team_id=team_id, attachment_type=attachment_type, bucket=bucket, path=path)


def require_team_scope(team_id, bucket, path, config=None):
    """Direct references must stay inside an attachment bucket, under the team's folder."""
    allowed = {config_value(config, "CSV_BUCKET"), config_value(config, "CHAT_BUCKET")}
    if bucket not in allowed:
        raise ForbiddenError()
    segments = path.split("/")
    if len(segments) < 2 or segments[0] != team_id or any(s in ("", ".", "..") for s in segments[1:]):
        raise ForbiddenError()


def require_team_membership(backend, team_id, user_id):
    if not team_id or not backend.is_team_member(team_id, user_id):
        raise ForbiddenError()


def office_embed_url(signed_url) -> str:
    return OFFICE_EMBED_URL + quote(signed_url, safe="")


# No quoted-field handling: a value containing a comma splits into two cells.
def parse_csv_grid(data, max_rows, max_cols) -> List[List[str]]:
    text = data.decode("utf-8-sig", errors="replace")
    lines = [line for line in re.split(r"\r?\n", text) if line][:max_rows]
    return [line.split(",")[:max_cols] for line in lines]


def cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime.datetime):
        if value.time() == datetime.time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def parse_xlsx_grid(data, max_rows, max_cols) -> Tuple[str, List[List[str]]]:
    """First sheet as text rows; reads at most ``max_rows`` rows, drops blank ones."""
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
        raise PreviewError("Could not read Excel file: {0}".format(exc)) from exc

    try:
        if not wb.sheetnames:
            raise PreviewError("Spreadsheet has no sheets")
        ws = wb.worksheets[0]
        grid = []
        for values in ws.iter_rows(min_row=1, max_row=max_rows, max_col=max_cols, values_only=True):
            row = [cell_text(value) for value in values]
            while row and row[-1] == "":
                row.pop()
            if row:
                grid.append(row)
        return ws.title, grid
    finally:
        wb.close()


def _download(backend, ref, policy):
    label = "download({0}/{1})".format(ref.bucket, ref.path)
    try:
        return with_retry(lambda: backend.download(ref.bucket, ref.path), policy, label)
    except (VisitExportError, requests.RequestException) as exc:
        raise PreviewError("download_failed {0}: {1}".format(label, exc)) from exc


def preview_attachment(backend, user, body, config=None, policy=None) -> dict:
    """Resolve, authorize and preview one attachment for ``user``."""
    max_rows = body.get("max_rows")
    max_cols = body.get("max_cols")
    max_rows = clamp(config_value(config, "PREVIEW_MAX_ROWS") if max_rows is None else max_rows, 5, 500)
    max_cols = clamp(config_value(config, "PREVIEW_MAX_COLS") if max_cols is None else max_cols, 5, 60)

    ref = resolve_attachment_ref(backend, body, config)
    require_team_membership(backend, ref.team_id, user.id)

    signed_url = backend.create_signed_url(
        ref.bucket, ref.path, config_value(config, "SIGNED_URL_TTL_SECONDS")
    )
    meta = {
        "team_id": ref.team_id,
        "bucket": ref.bucket,
        "path": ref.path,
        "attachment_type": ref.attachment_type,
    }

    if ref.attachment_type not in TABULAR_TYPES:
        return {
            "ok": True,
            "mode": "url",
            "url": signed_url,
            "office_embed_url": (
                office_embed_url(signed_url) if ref.attachment_type in OFFICE_TYPES else None
            ),
            "title": ref.title,
            "meta": meta,
        }

    data = _download(backend, ref, policy or RetryPolicy.from_config(config))
    title = ref.title
    images = None
    if ref.attachment_type == "csv":
        grid = parse_csv_grid(data, max_rows, max_cols)
    else:
        sheet_name, grid = parse_xlsx_grid(data, max_rows, max_cols)
        title = "{0}: {1}".format(ref.title, sheet_name)
        images = extract_cell_images(
            data,
            max_rows=max_rows,
            max_cols=max_cols,
            max_images=config_value(config, "PREVIEW_MAX_IMAGES"),
            max_total_bytes=config_value(config, "PREVIEW_MAX_IMAGE_BYTES"),
            thumb_max_dim=config_value(config, "PREVIEW_THUMB_MAX_DIM"),
            thumb_quality=config_value(config, "PREVIEW_THUMB_QUALITY"),
        )

    html = render_preview_html(
        title,
        grid,
        max_rows,
        max_cols,
        images_by_cell=images.images_by_cell if images else None,
        images_meta=images.meta() if images else None,
    )
    logger.info(
        "preview %s/%s: %d rows, images %s", ref.bucket, ref.path, len(grid),
        images.meta() if images else "n/a",
    )
    meta.update(
        max_rows=max_rows,
        max_cols=max_cols,
        images_included=images.included if images else 0,
        images_omitted=images.omitted if images else 0,
        images_omitted_bytes=images.omitted_bytes if images else 0,
    )
    return {
        "ok": True,
        "mode": "html",
        "html": html,
        "url": signed_url,
        "title": title,
        "meta": meta,
    }
