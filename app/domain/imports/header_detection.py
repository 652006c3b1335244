"""
Header row detection for human-produced spreadsheets.

Exports often start with a title, a report date or a blank line before the
real column headers. We score the first few rows by how many cells look like
known header words and pick the best one.
"""
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence
import re
import logging

from app.core.config import settings
from app.domain.imports.canonical_schemas import HEADER_KEYWORDS

logger = logging.getLogger(__name__)

_NON_ALPHA = re.compile(r"[^a-z]")


@dataclass(frozen=True)
class HeaderDetectionResult:
    header_row_index: int
    headers: List[str]
    match_count: int


def _normalize_cell(cell: Any) -> str:
    if cell is None:
        return ""
    return _NON_ALPHA.sub("", str(cell).lower())


def count_keyword_matches(row: Sequence[Any], keywords: Iterable[str] = HEADER_KEYWORDS) -> int:
    """Number of cells in ``row`` containing at least one keyword fragment."""
    keywords = tuple(keywords)
    matches = 0
    for cell in row:
        normalized = _normalize_cell(cell)
        if normalized and any(keyword in normalized for keyword in keywords):
            matches += 1
    return matches


def build_header_labels(row: Sequence[Any]) -> List[str]:
    """
    Trimmed cell text, or ``Column_<n>`` (1-based) for blank cells.

    Repeated labels get a ``_<k>`` suffix (``Phone``, ``Phone_2``) so every
    column keeps its own key in the row objects.
    """
    labels = []
    taken = set()
    for idx, cell in enumerate(row):
        text = "" if cell is None else str(cell).strip()
        label = text or f"Column_{idx + 1}"
        if label in taken:
            suffix = 2
            while f"{label}_{suffix}" in taken:
                suffix += 1
            logger.warning("Duplicate header '%s' in column %d renamed to '%s_%d'", label, idx + 1, label, suffix)
            label = f"{label}_{suffix}"
        taken.add(label)
        labels.append(label)
    return labels


def detect_header_row(
    grid: Sequence[Sequence[Any]],
    keywords: Iterable[str] = HEADER_KEYWORDS,
    max_scan_rows: Optional[int] = None,
) -> HeaderDetectionResult:
    """
    Locate the header row of a raw cell grid.

    Only the first ``max_scan_rows`` rows are considered. A later row replaces
    the current best only on a strictly higher match count, so ties keep the
    earliest row and a grid without any match falls back to row 0.
    """
    scan_limit = max_scan_rows if max_scan_rows is not None else settings.header_scan_rows
    keywords = tuple(keywords)

    best_index = 0
    best_matches = 0
    for idx, row in enumerate(grid[:scan_limit]):
        matches = count_keyword_matches(row, keywords)
        if matches > best_matches:
            best_matches = matches
            best_index = idx

    header_row = grid[best_index] if grid else []
    headers = build_header_labels(header_row)
    logger.debug("Header row detected at index %d with %d keyword matches", best_index, best_matches)
    return HeaderDetectionResult(header_row_index=best_index, headers=headers, match_count=best_matches)
