"""
Canonical Normalizer
====================
Single entry point that turns untrusted schedule-shaped data (a hand-authored
timetable file or an assembled parse result) into the canonical model.

Malformed input never raises: the caller always gets a best-effort model, the
list of issues found on the way, and an ``ok`` flag that is true only when at
least one lesson survived.
"""

import copy
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Set, Tuple

from assembler import slot_sort_key
from settings import DEFAULT_CONFIG, TimetableConfig
from validator import has_entries

logger = logging.getLogger(__name__)


class NormalizationResult(NamedTuple):
    ok: bool
    issues: List[str]
    model: Dict[str, Any]


class SameAs(NamedTuple):
    """Unresolved ``{"sameAs": classId}`` day reference."""
    target: str


def sanitize_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def empty_model(config: TimetableConfig = DEFAULT_CONFIG) -> Dict[str, Any]:
    return {
        'meta': {},
        'timeslots': config.default_timeslots(),
        'classes': config.empty_classes(),
        'classIds': list(config.class_ids),
    }


# ─────────────────────────────────────────────────────────────
# Timeslots
# ─────────────────────────────────────────────────────────────

def normalize_timeslots(raw_timeslots: Any, issues: List[str],
                        config: TimetableConfig = DEFAULT_CONFIG) -> List[Dict[str, str]]:
    """Validated ``[{id, time}]``; falls back to the default slots when empty."""
    if not isinstance(raw_timeslots, list) or not raw_timeslots:
        return config.default_timeslots()

    seen: Set[str] = set()
    out: List[Dict[str, str]] = []
    for slot in raw_timeslots:
        slot = slot if isinstance(slot, dict) else {}
        slot_id = sanitize_text(slot.get('id'))
        time = sanitize_text(slot.get('time'))
        if not slot_id or not time:
            issues.append('Invalid timeslot (id/time missing).')
            continue
        if slot_id in seen:
            issues.append(f'Duplicate timeslot with id {slot_id}.')
            continue
        seen.add(slot_id)
        out.append({'id': slot_id, 'time': time})

    return out or config.default_timeslots()


# ─────────────────────────────────────────────────────────────
# Lessons and days
# ─────────────────────────────────────────────────────────────

def normalize_lesson(entry: Any, slot_ids: Set[str], issues: List[str], ctx: str,
                     config: TimetableConfig = DEFAULT_CONFIG) -> Optional[Dict[str, str]]:
    entry = entry if isinstance(entry, dict) else {}
    slot_id = sanitize_text(entry.get('slotId'))
    if not slot_id:
        issues.append(f'Lesson without slotId in {ctx}.')
        return None
    # Unknown slot ids are kept: consumers may define timeslots on their own.
    if slot_id not in slot_ids:
        issues.append(f'Unknown slotId {slot_id} in {ctx}.')

    return {
        'slotId': slot_id,
        'subject': sanitize_text(entry.get('subject')) or config.subject_placeholder,
        'teacher': sanitize_text(entry.get('teacher')),
        'room': sanitize_text(entry.get('room')),
        'note': sanitize_text(entry.get('note')),
    }


def normalize_day(day_raw: List[Any], slot_ids: Set[str], issues: List[str], ctx: str,
                  config: TimetableConfig = DEFAULT_CONFIG) -> List[Dict[str, str]]:
    """Sanitize, sort by slot id, then drop later duplicates of a slot."""
    lessons = []
    for index, entry in enumerate(day_raw, 1):
        lesson = normalize_lesson(entry, slot_ids, issues, f'{ctx} · entry {index}', config)
        if lesson is not None:
            lessons.append(lesson)
    lessons.sort(key=lambda lesson: slot_sort_key(lesson['slotId']))

    seen: Set[str] = set()
    unique = []
    for lesson in lessons:
        if lesson['slotId'] in seen:
            issues.append(f"Duplicate lesson slotId {lesson['slotId']} in {ctx}.")
            continue
        seen.add(lesson['slotId'])
        unique.append(lesson)
    return unique


def normalize_classes(raw_classes: Any, slot_ids: Set[str], issues: List[str],
                      config: TimetableConfig = DEFAULT_CONFIG) -> Dict[str, Dict[str, Any]]:
    """Per-class/day normalization; ``sameAs`` days are left as ``SameAs`` markers."""
    src = raw_classes if isinstance(raw_classes, dict) else {}
    class_ids = [str(c) for c in src] or list(config.class_ids)
    classes: Dict[str, Dict[str, Any]] = config.empty_classes(class_ids)

    for class_id in class_ids:
        class_data = src.get(class_id)
        if not isinstance(class_data, dict):
            continue
        for key in class_data:
            if key not in config.day_ids:
                issues.append(f'Unknown day key {key} in {class_id}; ignored.')
        for day_id in config.day_ids:
            day_raw = class_data.get(day_id)
            ctx = f'{class_id}/{day_id}'
            if isinstance(day_raw, dict) and 'sameAs' in day_raw:
                classes[class_id][day_id] = SameAs(sanitize_text(day_raw.get('sameAs')))
            elif isinstance(day_raw, list):
                classes[class_id][day_id] = normalize_day(day_raw, slot_ids, issues, ctx, config)
            elif day_raw is not None:
                issues.append(f'Unsupported day value in {ctx}; treated as empty.')

    return classes


# ─────────────────────────────────────────────────────────────
# sameAs references
# ─────────────────────────────────────────────────────────────

def resolve_references(classes: Dict[str, Dict[str, Any]], issues: List[str],
                       config: TimetableConfig = DEFAULT_CONFIG) -> None:
    """
    Replace every ``SameAs`` marker with a copy of the target class's day.

    Targets are resolved fully before being copied, so chains work. Every
    reference that cannot be resolved (missing target, cycle, or a target
    that is itself unresolvable) yields an empty day plus its own issue.
    """
    unresolved: Set[Tuple[str, str]] = set()

    def _fail(class_id: str, day_id: str, message: str) -> None:
        issues.append(message)
        classes[class_id][day_id] = []
        unresolved.add((class_id, day_id))

    def _resolve(class_id: str, day_id: str, chain: List[str]) -> Optional[List[Dict[str, str]]]:
        if (class_id, day_id) in unresolved:
            return None
        value = classes[class_id][day_id]
        if not isinstance(value, SameAs):
            return value

        target = value.target
        if not target or target not in classes:
            _fail(class_id, day_id, f'sameAs reference {target or "(empty)"} in {class_id}/{day_id} not found.')
            return None
        if target in chain or target == class_id:
            cycle = ' -> '.join(chain + [class_id, target])
            _fail(class_id, day_id, f'sameAs reference cycle {cycle} on {day_id}; treated as not found.')
            return None

        resolved = _resolve(target, day_id, chain + [class_id])
        if resolved is None:
            _fail(class_id, day_id,
                  f'sameAs reference {target} in {class_id}/{day_id} is unresolvable; treated as not found.')
            return None
        classes[class_id][day_id] = [dict(lesson) for lesson in resolved]
        return classes[class_id][day_id]

    for class_id in list(classes):
        for day_id in config.day_ids:
            _resolve(class_id, day_id, [])


# ─────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────

def normalize_timetable(raw: Any, config: TimetableConfig = DEFAULT_CONFIG) -> NormalizationResult:
    """Produce the canonical model, its issues and the overall validity flag."""
    if not isinstance(raw, dict):
        return NormalizationResult(
            False, ['Timetable data is empty or not a JSON object.'], empty_model(config))

    issues: List[str] = []
    timeslots = normalize_timeslots(raw.get('timeslots'), issues, config)
    slot_ids = {slot['id'] for slot in timeslots}
    classes = normalize_classes(raw.get('classes'), slot_ids, issues, config)
    resolve_references(classes, issues, config)

    meta = raw.get('meta')
    model = {
        'meta': copy.deepcopy(meta) if isinstance(meta, dict) else {},
        'timeslots': timeslots,
        'classes': classes,
        'classIds': list(classes),
    }

    ok = has_entries(classes)
    if not ok:
        issues.append('No lesson entries found. Please check the file/format.')

    logger.info("Normalized timetable: %d classes, ok=%s, %d issues.", len(classes), ok, len(issues))
    return NormalizationResult(ok, issues, model)
