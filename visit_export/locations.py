from __future__ import annotations

import logging
import os
import tempfile
from typing import List, Mapping, Optional

from .config import config_value

logger = logging.getLogger(__name__)

DOCUMENTS_FIRST = "documents-first"
CACHE_FIRST = "cache-first"

DIRECTORY_ORDER = {
    DOCUMENTS_FIRST: ("documents", "cache", "temporary"),
    CACHE_FIRST: ("cache", "documents", "temporary"),
}

UNAVAILABLE_TITLE = "Storage unavailable"
UNAVAILABLE_MESSAGE = (
    "We could not access a writable directory on this device. "
    "Please enable Files access or try again before sharing."
)


def normalize_dir(path) -> str:
    if path.endswith("/") or path.endswith(os.sep):
        return path
    return path + os.sep


def candidates_from_config(config=None) -> dict:
    return {
        "documents": config_value(config, "EXPORT_DIR") or "",
        "cache": config_value(config, "CACHE_DIR") or "",
        "temporary": tempfile.gettempdir() or "",
    }


def _log_unavailable(title, message):
    logger.warning("%s: %s", title, message)


class WritableLocationResolver:
    """Picks a directory for generated files; alerts at most once when none exists."""

    def __init__(self, notify=None):
        self.notify = notify or _log_unavailable
        self.already_notified = False

    def ordered(self, candidates: Mapping[str, Optional[str]], preference=DOCUMENTS_FIRST) -> List[str]:
        if preference not in DIRECTORY_ORDER:
            raise ValueError("unknown directory preference {0!r}".format(preference))
        ordered = []
        for key in DIRECTORY_ORDER[preference]:
            value = candidates.get(key)
            if isinstance(value, str) and value.strip():
                directory = normalize_dir(value.strip())
                if directory not in ordered:
                    ordered.append(directory)
        return ordered

    def resolve(self, candidates, preference=DOCUMENTS_FIRST) -> Optional[str]:
        ordered = self.ordered(candidates, preference)
        if ordered:
            return ordered[0]
        self.notify_unavailable()
        return None

    def notify_unavailable(self) -> bool:
        if self.already_notified:
            return False
        self.already_notified = True
        self.notify(UNAVAILABLE_TITLE, UNAVAILABLE_MESSAGE)
        return True
