from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .errors import GenerationError, PhotoUnavailableError
from .images import ImageAsset
from .locations import DOCUMENTS_FIRST
from .records import SubmissionRecord
from .workbook import XLSX_MIME, XLSX_UTI, BuiltWorkbook, build_submission_workbook

logger = logging.getLogger(__name__)

EXPORT_SUBDIR = "exports"
SHARE_TITLE = "Share spreadsheet"


class ExportState(str, Enum):
    BUILDING = "building"
    WRITING = "writing"
    SHARING = "sharing"
    DELIVERING = "delivering"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PhotoDiagnostics:
    slot: int
    ok: bool
    source: str = ""
    bytes: int = 0
    error: str = ""
    attempts: List[dict] = field(default_factory=list)

    def as_dict(self):
        return asdict(self)


@dataclass
class ExportResult:
    workbook: BuiltWorkbook
    diagnostics: List[PhotoDiagnostics]

    @property
    def data(self):
        return self.workbook.data

    @property
    def file_name(self):
        return self.workbook.file_name


@dataclass
class ExportOutcome:
    state: ExportState
    history: List[ExportState]
    path: Optional[str] = None
    message: Optional[str] = None
    result: Optional[ExportResult] = None


def collect_assets(record: SubmissionRecord, normalizer):
    """Fetch and shrink photos one slot at a time; failed slots are skipped."""
    assets: Dict[int, ImageAsset] = {}
    diagnostics = []
    for ref in record.photos:
        if ref.is_empty:
            diagnostics.append(PhotoDiagnostics(slot=ref.slot + 1, ok=False, error="no_reference"))
            continue
        try:
            asset = normalizer.normalize(ref)
        except PhotoUnavailableError as exc:
            logger.warning("submission %s photo %d skipped: %s", record.id, ref.slot + 1, exc)
            diagnostics.append(
                PhotoDiagnostics(slot=ref.slot + 1, ok=False, error=str(exc), attempts=exc.attempts)
            )
            continue
        assets[ref.slot] = asset
        diagnostics.append(
            PhotoDiagnostics(
                slot=ref.slot + 1,
                ok=True,
                source=asset.source,
                bytes=len(asset.data),
                attempts=asset.attempts,
            )
        )
    return assets, diagnostics


def build_export(record: SubmissionRecord, normalizer) -> ExportResult:
    assets, diagnostics = collect_assets(record, normalizer)
    workbook = build_submission_workbook(record, assets)
    logger.info(
        "built %s with %d/%d photos", workbook.file_name, len(workbook.image_slots),
        sum(1 for ref in record.photos if not ref.is_empty),
    )
    return ExportResult(workbook=workbook, diagnostics=diagnostics)


class _ExportRun:
    def __init__(self):
        self.history = []

    def advance(self, state):
        self.history.append(state)
        logger.debug("export state -> %s", state.value)

    def outcome(self, state, **kwargs):
        self.advance(state)
        return ExportOutcome(state=state, history=list(self.history), **kwargs)


def _write_file(directory, file_name, data):
    export_dir = os.path.join(directory, EXPORT_SUBDIR)
    os.makedirs(export_dir, exist_ok=True)
    path = os.path.join(export_dir, file_name)
    with open(path, "wb") as handle:
        handle.write(data)
    return path


def export_to_file(record, normalizer, resolver, candidates, share=None, share_bytes=None,
                   preference=DOCUMENTS_FIRST) -> ExportOutcome:
    """Build the workbook, write it to the first usable directory and hand it to ``share``.

    ``share(path, mime_type=..., uti=..., title=...)`` opens the platform share flow.
    ``share_bytes(data, file_name, mime_type)`` is the degraded path used when no
    directory can take the file.
    """
    run = _ExportRun()
    run.advance(ExportState.BUILDING)
    try:
        result = build_export(record, normalizer)
    except GenerationError as exc:
        logger.error("export of %s failed: %s", record.id, exc)
        return run.outcome(ExportState.FAILED, message="Spreadsheet failed: {0}".format(exc))

    run.advance(ExportState.WRITING)
    path = None
    directory = resolver.resolve(candidates, preference)
    if directory is not None:
        for candidate in resolver.ordered(candidates, preference):
            try:
                path = _write_file(candidate, result.file_name, result.data)
            except OSError as exc:
                logger.warning("could not write export to %s: %s", candidate, exc)
                continue
            break
        if path is None:
            resolver.notify_unavailable()

    if path is None:
        if share_bytes is None:
            return run.outcome(
                ExportState.FAILED,
                message="No writable directory available for export.",
                result=result,
            )
        run.advance(ExportState.SHARING)
        try:
            share_bytes(result.data, result.file_name, XLSX_MIME)
        except Exception as exc:
            logger.error("sharing raw spreadsheet bytes failed: %s", exc)
            return run.outcome(ExportState.FAILED, message="Unable to share spreadsheet.", result=result)
        return run.outcome(ExportState.DONE, result=result)

    if share is None:
        run.advance(ExportState.DELIVERING)
        return run.outcome(ExportState.DONE, path=path, result=result)

    run.advance(ExportState.SHARING)
    try:
        share(path, mime_type=XLSX_MIME, uti=XLSX_UTI, title=SHARE_TITLE)
    except Exception as exc:
        logger.error("sharing %s failed: %s", path, exc)
        if share_bytes is not None:
            try:
                share_bytes(result.data, result.file_name, XLSX_MIME)
            except Exception as fallback_exc:
                logger.error("sharing raw spreadsheet bytes failed: %s", fallback_exc)
            else:
                return run.outcome(ExportState.DONE, path=path, result=result)
        return run.outcome(ExportState.FAILED, path=path, message="Unable to share spreadsheet.", result=result)
    return run.outcome(ExportState.DONE, path=path, result=result)
