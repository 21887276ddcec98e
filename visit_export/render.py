from __future__ import annotations

from typing import List, Optional, Sequence

from jinja2 import Environment, PackageLoader, select_autoescape

from .xlsx_images import clamp

_env = Environment(
    loader=PackageLoader("visit_export", "templates"),
    autoescape=select_autoescape(["html"]),
)


def bound_grid(grid, max_rows, max_cols) -> List[List[str]]:
    """Cut a grid to ``max_rows`` rows and the widest row (at most ``max_cols``), padding short rows."""
    rows = [list(row or []) for row in (grid or [])[:max_rows]]
    col_count = min(max_cols, max((len(row) for row in rows), default=0))
    bounded = []
    for row in rows:
        cells = ["" if value is None else str(value) for value in row[:col_count]]
        cells.extend([""] * (col_count - len(cells)))
        bounded.append(cells)
    return bounded


def render_preview_html(title, grid: Sequence[Sequence], max_rows, max_cols,
                        images_by_cell=None, images_meta: Optional[dict] = None) -> str:
    max_rows = clamp(max_rows, 5, 500)
    max_cols = clamp(max_cols, 5, 60)
    rows = bound_grid(grid, max_rows, max_cols)
    omitted_bytes = (images_meta or {}).get("omitted_bytes", 0)
    template = _env.get_template("preview.html")
    return template.render(
        title=title,
        max_rows=max_rows,
        max_cols=max_cols,
        header=rows[0] if rows else None,
        body=rows[1:],
        images_by_cell=images_by_cell or {},
        images_meta=images_meta,
        omitted_kb=int(omitted_bytes / 1024 + 0.5),
    )
