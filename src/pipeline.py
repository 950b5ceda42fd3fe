"""
Timetable Ingestion Pipeline
============================
Wires the stages together:

    raw document → rows → entries → validated entries → assembled model
                                                           ↓
    canonical file ─────────────────────────────→ normalize (both)
                                                           ↓
                                                    arbitrate → chosen model

``parse_document`` produces the parsed candidate; ``load_timetable_source``
fetches both inputs concurrently, normalizes them and picks the winner.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from arbitrator import CANONICAL, NoTimetableSourceError, choose_source
from assembler import assemble_model
from interpreter import interpret_rows
from normalizer import NormalizationResult, normalize_timetable
from rows import reconstruct_rows
from settings import DEFAULT_CONFIG, TimetableConfig
from validator import validate_entries

logger = logging.getLogger(__name__)

PARSER_TAG = 'pdf-tokens'


class ParseResult(NamedTuple):
    ok: bool
    issues: List[str]
    model: Dict[str, Any]
    debug: Dict[str, int]


class SourceSelection(NamedTuple):
    """The chosen canonical model plus everything an operator needs to audit it."""
    model: Dict[str, Any]
    source: str
    ok: bool
    issues: List[str]
    notes: List[str]


def read_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


# ─────────────────────────────────────────────────────────────
# Parsed candidate
# ─────────────────────────────────────────────────────────────

def parse_document(raw: Any, config: TimetableConfig = DEFAULT_CONFIG) -> ParseResult:
    """
    Run row reconstruction, interpretation, validation and assembly on a
    raw ``{meta, items}`` positioned-token document.
    """
    if not isinstance(raw, dict):
        return ParseResult(
            False,
            ['Raw document data is missing or invalid.'],
            assemble_model([], [], {}, config),
            {'rowCount': 0, 'interpretedCount': 0, 'specialEventCount': 0},
        )

    issues: List[str] = []
    rows = reconstruct_rows(raw.get('items') or [], tolerance=config.y_tolerance)
    interpretation = interpret_rows(rows, config)
    issues.extend(interpretation.issues)
    if not interpretation.entries:
        issues.append('Document interpretation yielded no entries.')

    validation = validate_entries(interpretation.entries, min_entries=config.min_entries)
    issues.extend(validation.issues)

    raw_meta = raw.get('meta') if isinstance(raw.get('meta'), dict) else {}
    meta = dict(raw_meta, parser=PARSER_TAG, specialEvents=interpretation.special_events)
    model = assemble_model(validation.entries, interpretation.class_ids, meta, config)

    debug = {
        'rowCount': len(rows),
        'interpretedCount': len(validation.entries),
        'specialEventCount': len(interpretation.special_events),
    }
    ok = validation.ok and bool(interpretation.entries)
    logger.info("Parsed document: %d rows, %d entries, ok=%s.", debug['rowCount'], debug['interpretedCount'], ok)
    return ParseResult(ok, issues, model, debug)


def normalize_parsed(raw: Any, config: TimetableConfig = DEFAULT_CONFIG) -> NormalizationResult:
    """Parse a raw document and normalize the result; ``ok`` needs both stages to pass."""
    parsed = parse_document(raw, config)
    normalized = normalize_timetable(parsed.model, config)
    return NormalizationResult(
        parsed.ok and normalized.ok,
        parsed.issues + normalized.issues,
        normalized.model,
    )


# ─────────────────────────────────────────────────────────────
# Source loading
# ─────────────────────────────────────────────────────────────


_UNAVAILABLE = object()


def _collect(future, done, label: str, timeout: Optional[float], notes: List[str]) -> Any:
    if future not in done:
        notes.append(f'{label} not available: timed out after {timeout}s.')
    else:
        try:
            return future.result()
        except Exception as e:
            notes.append(f'{label} not available: {e}')
    logger.warning("%s could not be fetched.", label)
    return _UNAVAILABLE


def load_timetable_source(
    fetch_canonical: Callable[[], Any],
    fetch_document: Callable[[], Any],
    timeout: Optional[float] = None,
    config: TimetableConfig = DEFAULT_CONFIG,
) -> SourceSelection:
    """
    Fetch both inputs concurrently, normalize them and arbitrate.

    Both fetches share one ``timeout`` deadline. A failed or timed-out fetch
    only removes that candidate; the loader does not wait for it. Raises
    ``NoTimetableSourceError`` (carrying the whole diagnostic trail) when
    neither candidate survives.
    """
    notes: List[str] = []
    executor = ThreadPoolExecutor(max_workers=2)
    try:
        canonical_future = executor.submit(fetch_canonical)
        document_future = executor.submit(fetch_document)
        done, _ = wait([canonical_future, document_future], timeout=timeout)
        canonical_raw = _collect(canonical_future, done, 'Canonical timetable', timeout, notes)
        document_raw = _collect(document_future, done, 'Raw document', timeout, notes)
    finally:
        executor.shutdown(wait=False)

    canonical = None
    if canonical_raw is not _UNAVAILABLE:
        canonical = normalize_timetable(canonical_raw, config)
    parsed = None
    if document_raw is not _UNAVAILABLE:
        parsed = normalize_parsed(document_raw, config)
        if not parsed.ok:
            notes.extend(f'Parsed document: {issue}' for issue in parsed.issues)

    try:
        decision = choose_source(canonical, parsed)
    except NoTimetableSourceError as e:
        raise NoTimetableSourceError(notes + e.notes) from e
    notes.extend(decision.notes)

    chosen = canonical if decision.chosen_source == CANONICAL else parsed
    return SourceSelection(chosen.model, decision.chosen_source, chosen.ok, chosen.issues, notes)
