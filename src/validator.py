"""
Timetable Validator
===================
Integrity checks for interpreted lesson entries, plus quality statistics and
the Markdown validation report written next to every parsed timetable.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np
import pandas as pd

from interpreter import LessonEntry
from settings import DEFAULT_QUALITY, MIN_ENTRIES, QualityThresholds

logger = logging.getLogger(__name__)

KEY_COLUMNS = ['classId', 'dayId', 'slotId']
LESSON_COLUMNS = KEY_COLUMNS + ['subject', 'teacher', 'room', 'note']

MAX_DISPLAY_ISSUES = 25


class EntryValidation(NamedTuple):
    """Deduplicated entries plus the verdict for a candidate entry list."""
    entries: List[LessonEntry]
    issues: List[str]
    ok: bool


class ValidationResult(NamedTuple):
    """Structured result from build_report()."""
    report: str
    success: bool


# ─────────────────────────────────────────────────────────────
# Entry validation
# ─────────────────────────────────────────────────────────────

def validate_entries(
    entries: Optional[List[LessonEntry]],
    min_entries: int = MIN_ENTRIES,
) -> EntryValidation:
    """
    Drop duplicate ``(classId, dayId, slotId)`` candidates and check volume.

    The first occurrence of a key wins; every later one is dropped with its
    own issue. Fewer than ``min_entries`` surviving entries fails the run
    even when there were no duplicates. ``ok`` is true only without issues.
    """
    entries = list(entries or [])
    issues: List[str] = []

    df = pd.DataFrame([e.key for e in entries], columns=KEY_COLUMNS)
    dup_mask = df.duplicated(subset=KEY_COLUMNS, keep='first')

    kept: List[LessonEntry] = []
    for entry, is_dup in zip(entries, dup_mask.tolist()):
        if is_dup:
            issues.append(
                f"Duplicate entry {'|'.join(entry.key)} dropped "
                f"(kept first occurrence; dropped subject '{entry.subject}')."
            )
            continue
        kept.append(entry)

    if len(kept) < min_entries:
        issues.append(
            f"Too few entries ({len(kept)}) for a complete timetable "
            f"(expected at least {min_entries})."
        )

    if issues:
        logger.info("Entry validation: %d kept, %d issues.", len(kept), len(issues))
    return EntryValidation(kept, issues, not issues)


# ─────────────────────────────────────────────────────────────
# Model statistics
# ─────────────────────────────────────────────────────────────

def has_entries(classes: Any) -> bool:
    """True if any class/day list in ``classes`` holds at least one lesson."""
    if not isinstance(classes, dict):
        return False
    return any(
        isinstance(entries, list) and len(entries) > 0
        for days in classes.values() if isinstance(days, dict)
        for entries in days.values()
    )


def flatten_model(model: Dict[str, Any]) -> List[Dict[str, str]]:
    """One record per lesson, keyed by class/day/slot."""
    records: List[Dict[str, str]] = []
    classes = model.get('classes') if isinstance(model, dict) else None
    if not isinstance(classes, dict):
        return records
    for class_id, days in classes.items():
        if not isinstance(days, dict):
            continue
        for day_id, lessons in days.items():
            if not isinstance(lessons, list):
                continue
            for lesson in lessons:
                if not isinstance(lesson, dict):
                    continue
                record = {'classId': class_id, 'dayId': day_id}
                for col in LESSON_COLUMNS[2:]:
                    record[col] = lesson.get(col, '')
                records.append(record)
    return records


def summarize_quality(model: Dict[str, Any]) -> Dict[str, Any]:
    """Entry counts and class/day coverage of a canonical model."""
    df = pd.DataFrame(flatten_model(model), columns=LESSON_COLUMNS)
    class_ids = list((model or {}).get('classIds') or (model or {}).get('classes') or [])

    def _filled(col: str) -> int:
        return int((df[col].fillna('').astype(str).str.strip() != '').sum())

    per_class = df.groupby('classId').size().to_dict() if not df.empty else {}
    days_per_class = df.groupby('classId')['dayId'].nunique().to_dict() if not df.empty else {}
    return {
        'entries': len(df),
        'with_teacher': _filled('teacher'),
        'with_room': _filled('room'),
        'with_note': _filled('note'),
        'class_day_coverage': int(df[['classId', 'dayId']].drop_duplicates().shape[0]),
        'entries_by_class': {c: int(per_class.get(c, 0)) for c in class_ids},
        'day_coverage_by_class': {c: int(days_per_class.get(c, 0)) for c in class_ids},
    }


def imbalance_penalty(stats: Dict[str, Any]) -> float:
    """
    How far classes fall below half the median per-class entry count.

    Zero for balanced timetables; grows by 1.5 per missing entry of every
    class under the half-median line.
    """
    counts = list((stats.get('entries_by_class') or {}).values())
    if not counts:
        return 0.0
    median = float(np.median(counts))
    if median <= 0:
        return 0.0
    floor = median * 0.5
    return float(sum((floor - count) * 1.5 for count in counts if count < floor))


def check_quality(
    model: Dict[str, Any],
    thresholds: QualityThresholds = DEFAULT_QUALITY,
) -> List[str]:
    """
    Gate a full timetable on volume, coverage and per-class balance.

    Returns one diagnostic per failed check; an empty list means the
    timetable may be published.
    """
    stats = summarize_quality(model)
    issues: List[str] = []

    if stats['entries'] < thresholds.min_entries:
        issues.append(
            f"Timetable quality too low: only {stats['entries']} entries "
            f"(expected at least {thresholds.min_entries})."
        )
    if stats['class_day_coverage'] < thresholds.min_class_day_coverage:
        issues.append(
            f"Timetable coverage too low: {stats['class_day_coverage']} class-day cells "
            f"(expected at least {thresholds.min_class_day_coverage})."
        )

    counts = stats['entries_by_class']
    if counts:
        median = float(np.median(list(counts.values())))
        min_expected = max(thresholds.min_class_entries, int(median * thresholds.class_median_ratio))
        for class_id, count in counts.items():
            if count < min_expected:
                issues.append(
                    f"Class {class_id} has suspiciously few entries "
                    f"({count}; expected at least {min_expected})."
                )

    for class_id, days in stats['day_coverage_by_class'].items():
        if days < thresholds.min_days_per_class:
            issues.append(
                f"Class {class_id} has too little day coverage "
                f"({days}; expected at least {thresholds.min_days_per_class})."
            )

    if issues:
        logger.warning("Quality gate failed with %d issue(s).", len(issues))
    return issues


# ─────────────────────────────────────────────────────────────
# Report
# ─────────────────────────────────────────────────────────────

def build_report(
    issues: List[str],
    model: Dict[str, Any],
    ok: bool,
    source: Optional[str] = None,
) -> ValidationResult:
    """Render issues and quality statistics as a Markdown report."""
    stats = summarize_quality(model)

    report = ["# Validation Report", ""]
    report.append("## Summary Statistics")
    if source:
        report.append(f"- **Source**: {source}")
    report.append(f"- **Total Entries**: {stats['entries']}")
    report.append(f"- **With Teacher**: {stats['with_teacher']}")
    report.append(f"- **With Room**: {stats['with_room']}")
    report.append(f"- **Class/Day Coverage**: {stats['class_day_coverage']}")
    report.append(f"- **Class Imbalance**: {imbalance_penalty(stats):.1f}")
    for class_id, count in stats['entries_by_class'].items():
        report.append(f"  - {class_id}: {count}")
    report.append("")

    if ok and not issues:
        report.append("## Result: ✅ PASSED")
        report.append("All structural checks passed with no issues.")
    elif ok:
        report.append("## Result: ⚠️ PASSED WITH ISSUES")
        report.append(f"Timetable is usable. {len(issues)} issue(s) found.")
    else:
        report.append("## Result: ❌ FAILED")
        report.append(f"Found **{len(issues)} issue(s)**.")

    if issues:
        report.append("\n### Issues:")
        report.extend(f"- {issue}" for issue in issues[:MAX_DISPLAY_ISSUES])
        if len(issues) > MAX_DISPLAY_ISSUES:
            report.append(f"- ... and {len(issues) - MAX_DISPLAY_ISSUES} more.")

    logger.info("Validation report: ok=%s, %d issues", ok, len(issues))
    return ValidationResult("\n".join(report), ok)
