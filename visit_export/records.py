from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Optional, Tuple

MAX_PHOTOS = 6
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif", ".bmp")


def normalize_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(normalize_text(item) for item in value if item is not None)
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def normalize_tags(value) -> list[str]:
    """Tags were stored both as arrays and as comma-joined or JSON-encoded strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [text for text in (normalize_text(item).strip() for item in value) if text]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return normalize_tags(parsed)
        return [part.strip() for part in text.split(",") if part.strip()]
    return normalize_tags([value])


def normalize_priority(value) -> Optional[int]:
    """Integral priorities only; 2.9, "1.5" and booleans are not priorities."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not number.is_integer():
        return None
    return int(number)


def is_submission_id(value) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def slot_cell(slot: int) -> Tuple[int, int]:
    """0-based slot -> (column, row block) in the 2 x 3 photo grid."""
    return slot % 2, slot // 2


def safe_file_base(value, default="submission") -> str:
    text = (normalize_text(value) or "").strip()
    text = re.sub(r"[^A-Za-z0-9_-]+", "-", text)
    text = re.sub(r"-+", "-", text).strip("-")
    return text[:80] or default


def has_image_extension(reference: str) -> bool:
    lower = (reference or "").split("?", 1)[0].lower()
    return lower.endswith(IMAGE_EXTENSIONS)


@dataclass(frozen=True)
class PhotoReference:
    slot: int
    path: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.path or self.url)


@dataclass(frozen=True)
class SubmissionRecord:
    id: str
    team_id: Optional[str] = None
    date: str = ""
    brand: str = ""
    store_site: str = ""
    store_location: str = ""
    location: str = ""
    conditions: str = ""
    price_per_unit: str = ""
    shelf_space: str = ""
    on_shelf: str = ""
    tags: Tuple[str, ...] = ()
    notes: str = ""
    priority_level: Optional[int] = None
    priority_text: str = ""
    submitted_by: str = ""
    photos: Tuple[PhotoReference, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: dict) -> "SubmissionRecord":
        photos = []
        for slot in range(MAX_PHOTOS):
            path = (normalize_text(row.get("photo{0}_path".format(slot + 1))) or "").strip()
            url = (normalize_text(row.get("photo{0}_url".format(slot + 1))) or "").strip()
            photos.append(PhotoReference(slot=slot, path=path or None, url=url or None))

        # Older rows only carried a photo_urls array.
        legacy_urls = row.get("photo_urls")
        if isinstance(legacy_urls, (list, tuple)):
            for slot, url in enumerate(legacy_urls[:MAX_PHOTOS]):
                if url and photos[slot].is_empty:
                    photos[slot] = PhotoReference(slot=slot, url=str(url).strip())

        return cls(
            id=normalize_text(row.get("id")),
            team_id=normalize_text(row.get("team_id")) or None,
            date=normalize_text(row.get("date")),
            brand=normalize_text(row.get("brand")),
            store_site=normalize_text(row.get("store_site")),
            store_location=normalize_text(row.get("store_location")),
            location=normalize_text(row.get("location")),
            conditions=normalize_text(row.get("conditions")),
            price_per_unit=normalize_text(row.get("price_per_unit")),
            shelf_space=normalize_text(row.get("shelf_space")),
            on_shelf=normalize_text(row.get("on_shelf")),
            tags=tuple(normalize_tags(row.get("tags"))),
            notes=normalize_text(row.get("notes")),
            priority_level=normalize_priority(row.get("priority_level")),
            priority_text=normalize_text(row.get("priority_level")).strip(),
            submitted_by=normalize_text(row.get("submitted_by")),
            photos=tuple(photos),
        )

    @property
    def title(self) -> str:
        return (self.store_site or self.store_location or "Submission").upper()

    @property
    def file_name(self) -> str:
        base = safe_file_base(self.store_location or self.store_site or self.brand)
        return "{0}-{1}.xlsx".format(base, self.id or "unknown")

    def field_rows(self):
        """Label/value pairs in worksheet order."""
        rows = [
            ("DATE", self.date),
            ("BRAND", self.brand),
            ("STORE LOCATION", self.store_location),
            ("LOCATIONS", self.location),
            ("CONDITIONS", self.conditions),
            ("PRICE PER UNIT", self.price_per_unit),
            ("SHELF SPACE", self.shelf_space),
            ("FACES ON SHELF", self.on_shelf),
            ("TAGS", ", ".join(self.tags)),
            ("NOTES", self.notes),
            ("PRIORITY LEVEL", self.priority_text),
        ]
        if self.submitted_by:
            rows.append(("SUBMITTED BY", self.submitted_by))
        return rows
