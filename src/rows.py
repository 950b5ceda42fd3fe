"""
Row Reconstructor
=================
Clusters loose positioned text tokens (as emitted by a PDF text layer) into
logical table rows.

Coordinates jitter between tokens that visually share a line, so rows are
built by vertical proximity rather than exact equality. The clustering rule
is a pluggable ``RowStrategy``; ``ToleranceRowStrategy`` is the default.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

import numpy as np

from settings import ROW_Y_TOLERANCE

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r'\s+')


@dataclass(frozen=True)
class Token:
    """A unit of extracted text with its page position."""
    text: str
    x: float
    y: float


@dataclass
class Row:
    """Tokens believed to lie on one visual line."""
    y: float
    tokens: List[Token] = field(default_factory=list)
    text: str = ''


def clean_text(value: Any) -> str:
    """Stringify and collapse all whitespace runs to single spaces."""
    if value is None:
        return ''
    return _WS_RE.sub(' ', str(value)).strip()


def _to_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if np.isfinite(number) else None


def coerce_tokens(items: Optional[Iterable[Any]]) -> List[Token]:
    """
    Turn raw items into Tokens, discarding malformed ones.

    Accepts dicts carrying the text under ``str`` or ``text``, or ready
    ``Token`` instances. Blank text and non-finite coordinates are dropped.
    """
    tokens: List[Token] = []
    if not items:
        return tokens
    for item in items:
        if isinstance(item, Token):
            raw_text, raw_x, raw_y = item.text, item.x, item.y
        elif isinstance(item, dict):
            raw_text = item.get('str', item.get('text'))
            raw_x, raw_y = item.get('x'), item.get('y')
        else:
            continue
        text = clean_text(raw_text)
        x = _to_coordinate(raw_x)
        y = _to_coordinate(raw_y)
        if not text or x is None or y is None:
            continue
        tokens.append(Token(text, x, y))
    return tokens


# ─────────────────────────────────────────────────────────────
# Strategies
# ─────────────────────────────────────────────────────────────

class RowStrategy:
    """Groups tokens into rows. Subclasses implement ``group``."""

    def group(self, tokens: List[Token]) -> List[Row]:
        raise NotImplementedError


class ToleranceRowStrategy(RowStrategy):
    """
    Single-pass clustering by running vertical average.

    Tokens are visited in (y, x, text) order; each joins the first row whose
    running y lies within ``tolerance``, and that row's y becomes the mean of
    its previous y and the token's y.
    """

    def __init__(self, tolerance: float = ROW_Y_TOLERANCE):
        self.tolerance = float(tolerance)

    def group(self, tokens: List[Token]) -> List[Row]:
        ordered = sorted(tokens, key=lambda t: (t.y, t.x, t.text))
        rows: List[Row] = []
        for token in ordered:
            row = next((r for r in rows if abs(r.y - token.y) <= self.tolerance), None)
            if row is None:
                rows.append(Row(y=token.y, tokens=[token]))
                continue
            row.tokens.append(token)
            row.y = float(np.mean([row.y, token.y]))
        return rows


# ─────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────

def reconstruct_rows(
    items: Optional[Iterable[Any]],
    tolerance: float = ROW_Y_TOLERANCE,
    strategy: Optional[RowStrategy] = None,
) -> List[Row]:
    """
    Cluster positioned items into rows ordered top to bottom.

    Never raises; empty or entirely malformed input yields ``[]``.
    """
    tokens = coerce_tokens(items)
    if not tokens:
        return []

    strategy = strategy or ToleranceRowStrategy(tolerance)
    rows = strategy.group(tokens)

    rows.sort(key=lambda r: r.y)
    for row in rows:
        row.tokens.sort(key=lambda t: (t.x, t.text))
        row.text = clean_text(' '.join(t.text for t in row.tokens))

    logger.debug("Reconstructed %d rows from %d tokens.", len(rows), len(tokens))
    return rows
