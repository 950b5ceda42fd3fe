"""
Source Arbitrator
=================
Chooses between the hand-authored canonical timetable and the freshly parsed
document by freshness metadata.

States, evaluated once per run:

    NONE            neither candidate usable → NoTimetableSourceError
    CANONICAL_ONLY  canonical wins
    PARSED_ONLY     parsed wins
    BOTH            newer timestamp wins; tie → canonical;
                    only one known → that one; none known → parsed

A parsed candidate whose ``ok`` flag is false is excluded before the state is
determined. A canonical candidate whose ``ok`` flag is false only survives
when no valid parsed candidate exists.
"""

import logging
from enum import Enum
from typing import Any, List, NamedTuple, Optional

import pandas as pd

from normalizer import NormalizationResult

logger = logging.getLogger(__name__)

CANONICAL = 'canonical'
PARSED = 'parsed'

UPDATED_KEYS = ('updatedAt', 'updated_at', 'updated')
VALID_FROM_KEYS = ('validFrom', 'valid_from')


class SourceState(Enum):
    NONE = 'no candidates'
    CANONICAL_ONLY = 'only canonical available'
    PARSED_ONLY = 'only parsed available'
    BOTH = 'both available'


class ArbitrationDecision(NamedTuple):
    chosen_source: str
    notes: List[str]
    state: SourceState


class NoTimetableSourceError(RuntimeError):
    """Neither the canonical file nor the parsed document is usable."""

    def __init__(self, notes: List[str]):
        super().__init__('No timetable source available: ' + '; '.join(notes))
        self.notes = notes


def _parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        ts = pd.to_datetime(value.strip(), utc=True, errors='coerce')
    except (ValueError, TypeError, OverflowError):
        return None
    return None if pd.isna(ts) else ts


def freshness(meta: Any) -> Optional[pd.Timestamp]:
    """
    Freshness timestamp of a model: the ``updated`` stamp, else ``validFrom``.

    Absent or unparsable stamps give ``None`` (unknown), never zero.
    """
    if not isinstance(meta, dict):
        return None
    for keys in (UPDATED_KEYS, VALID_FROM_KEYS):
        for key in keys:
            ts = _parse_timestamp(meta.get(key))
            if ts is not None:
                return ts
    return None


def _meta(result: NormalizationResult) -> Any:
    return result.model.get('meta') if isinstance(result.model, dict) else None


def choose_source(
    canonical: Optional[NormalizationResult],
    parsed: Optional[NormalizationResult],
) -> ArbitrationDecision:
    """
    Decide which normalized candidate to present.

    ``None`` means the candidate was not available this run. Raises
    ``NoTimetableSourceError`` when no candidate remains.
    """
    notes: List[str] = []

    if parsed is not None and not parsed.ok:
        notes.append('Parsed document failed validation; falling back to the canonical timetable.')
        parsed = None
    if canonical is not None and not canonical.ok:
        if parsed is not None:
            notes.append('Canonical timetable has no usable entries; using the parsed document instead.')
            canonical = None
        else:
            notes.append('Canonical timetable has no usable entries.')

    if canonical is None and parsed is None:
        state = SourceState.NONE
    elif parsed is None:
        state = SourceState.CANONICAL_ONLY
    elif canonical is None:
        state = SourceState.PARSED_ONLY
    else:
        state = SourceState.BOTH

    if state is SourceState.NONE:
        notes.append('Neither canonical timetable nor parsed document is available.')
        logger.warning("No timetable source available.")
        raise NoTimetableSourceError(notes)

    if state is SourceState.CANONICAL_ONLY:
        notes.append('Only the canonical timetable is available; using it.')
        chosen = CANONICAL
    elif state is SourceState.PARSED_ONLY:
        notes.append('Only the parsed document is available; using it.')
        chosen = PARSED
    else:
        canonical_ts = freshness(_meta(canonical))
        parsed_ts = freshness(_meta(parsed))
        if canonical_ts is not None and parsed_ts is not None:
            if parsed_ts > canonical_ts:
                chosen = PARSED
                notes.append(f'Parsed document ({parsed_ts.isoformat()}) is newer than '
                             f'canonical timetable ({canonical_ts.isoformat()}).')
            else:
                chosen = CANONICAL
                notes.append(f'Canonical timetable ({canonical_ts.isoformat()}) is newer than or '
                             f'as new as parsed document ({parsed_ts.isoformat()}).')
        elif canonical_ts is not None:
            chosen = CANONICAL
            notes.append('Only the canonical timetable carries a timestamp; using it.')
        elif parsed_ts is not None:
            chosen = PARSED
            notes.append('Only the parsed document carries a timestamp; using it.')
        else:
            chosen = PARSED
            notes.append('Neither source carries a timestamp; preferring the parsed document.')

    logger.info("Source arbitration: %s (%s).", chosen, state.value)
    return ArbitrationDecision(chosen, notes, state)
