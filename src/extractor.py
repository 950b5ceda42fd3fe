"""
Timetable PDF Token Extractor
=============================
Reads one page of a timetable PDF into positioned text items and derives the
document's date metadata ("Gültig ab" valid-from date, bottom-right update
date).

Output is the raw positioned-token document consumed by the pipeline::

    {"meta": {"source": ..., "validFrom": ..., "updatedAt": ...},
     "items": [{"str": "class:HT11;day:mo;...", "x": 42.5, "y": 118.0}, ...]}

Coordinates follow pdfplumber: ``x`` is the word's left edge, ``y`` its top
edge measured from the top of the page.
"""

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

import pdfplumber

from rows import clean_text

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r'(\d{1,2})\.(\d{1,2})\.(\d{2,4})')
VALID_FROM_RE = re.compile(r'gültig\s*ab', re.IGNORECASE)

# Max vertical distance between a "Gültig ab" label and its date.
LABEL_LINE_TOLERANCE: float = 14.0
# A date may start slightly left of its label's x.
LABEL_X_SLACK: float = 20.0


# ─────────────────────────────────────────────────────────────
# Date metadata
# ─────────────────────────────────────────────────────────────

def parse_german_date(raw: Any) -> Optional[str]:
    """
    Find a ``d.m.yy`` / ``dd.mm.yyyy`` date in ``raw`` and return it as ISO.

    Two-digit years from 70 map to 19xx, below to 20xx. Impossible calendar
    dates (``31.02.2026``) give ``None``.
    """
    if not raw:
        return None
    match = DATE_RE.search(str(raw))
    if not match:
        return None
    day, month, year = (int(g) for g in match.groups())
    if year < 100:
        year += 1900 if year >= 70 else 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _dated(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for item in items:
        parsed = parse_german_date(item.get('str'))
        if parsed:
            out.append(dict(item, parsed=parsed))
    return out


def find_valid_from(items: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """
    Locate the "Gültig ab" date.

    A label item that already contains the date wins; otherwise the nearest
    dated item on the label's line, to its right, is used.
    """
    labels = [it for it in items if VALID_FROM_RE.search(it.get('str', ''))]
    for label in labels:
        parsed = parse_german_date(label['str'])
        if parsed:
            return {'value': parsed, 'raw': label['str']}
    if not labels:
        return {'value': None, 'raw': None}

    label = sorted(labels, key=lambda it: (it['y'], it['x']))[0]
    candidates = [
        d for d in _dated(items)
        if abs(d['y'] - label['y']) <= LABEL_LINE_TOLERANCE and d['x'] >= label['x'] - LABEL_X_SLACK
    ]
    if not candidates:
        return {'value': None, 'raw': label['str']}
    nearest = sorted(candidates, key=lambda d: (d['x'], abs(d['y'] - label['y'])))[0]
    return {'value': nearest['parsed'], 'raw': nearest['str']}


def find_updated_date(items: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """The bottom-right dated item is the document's print/update date."""
    dated = _dated(items)
    if not dated:
        return {'value': None, 'raw': None}
    bottom_right = sorted(dated, key=lambda d: (-d['y'], -d['x']))[0]
    return {'value': bottom_right['parsed'], 'raw': bottom_right['str']}


# ─────────────────────────────────────────────────────────────
# Extractor
# ─────────────────────────────────────────────────────────────

class TokenExtractor:
    """
    Positioned-text extractor for single-page timetable PDFs.

    Usage:
        extractor = TokenExtractor("plan/stundenplan.pdf")
        document = extractor.to_document()
    """

    def __init__(self, pdf_path: str, page_number: int = 1):
        self.pdf_path = pdf_path
        self.page_number = page_number
        self.items: List[Dict[str, Any]] = []

    def extract_raw(self) -> List[Dict[str, Any]]:
        """Extract ``{str, x, y}`` word items from the configured page."""
        with pdfplumber.open(self.pdf_path) as pdf:
            page_count = len(pdf.pages)
            if not 1 <= self.page_number <= page_count:
                raise ValueError(
                    f"Page {self.page_number} out of range (document has {page_count} pages)."
                )
            words = pdf.pages[self.page_number - 1].extract_words(keep_blank_chars=True)

        items = []
        for word in words:
            text = clean_text(word.get('text'))
            if not text:
                continue
            items.append({'str': text, 'x': round(float(word['x0']), 2), 'y': round(float(word['top']), 2)})

        self.items = items
        logger.info("Extracted %d text items from page %d of %s.", len(items), self.page_number, self.pdf_path)
        return self.items

    def extract_dates(self) -> Dict[str, Optional[str]]:
        """``validFrom`` / ``updatedAt`` plus the raw text they came from."""
        if not self.items:
            self.extract_raw()
        valid_from = find_valid_from(self.items)
        updated = find_updated_date(self.items)
        return {
            'validFrom': valid_from['value'],
            'updatedAt': updated['value'],
            'validFromRaw': valid_from['raw'],
            'updatedAtRaw': updated['raw'],
        }

    def to_document(self) -> Dict[str, Any]:
        """Raw positioned-token document with source and date metadata."""
        if not self.items:
            self.extract_raw()
        if not self.items:
            raise ValueError(f"No extractable text in {self.pdf_path}.")
        dates = self.extract_dates()
        meta = {'source': str(self.pdf_path), 'validFrom': dates['validFrom'], 'updatedAt': dates['updatedAt']}
        return {'meta': meta, 'items': list(self.items)}
