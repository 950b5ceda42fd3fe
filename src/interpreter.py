"""
Row Interpreter
===============
Decodes reconstructed row text into lesson-entry candidates.

Two row layouts are understood:

- keyed rows, ``class:HT11;day:mo;slot:1;subject:Deutsch;teacher:MEL;room:6``,
  with case-insensitive, bilingual keys;
- loose rows, ``HT11 Mo 1 Deutsch MEL 6``, tried only when a row carries
  no recognized key at all.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

from rows import Row, clean_text
from settings import DEFAULT_CONFIG, LONG_SUBJECT_LENGTH, TimetableConfig

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

DAY_MAP = {
    'montag': 'mo', 'mo': 'mo',
    'dienstag': 'di', 'di': 'di',
    'mittwoch': 'mi', 'mi': 'mi',
    'donnerstag': 'do', 'do': 'do',
    'freitag': 'fr', 'fr': 'fr',
}

FIELD_ALIASES = {
    'class_id': ('class', 'klasse'),
    'day': ('day', 'tag'),
    'slot': ('slot', 'std', 'stunde'),
    'subject': ('subject', 'fach'),
    'teacher': ('teacher', 'lehrer'),
    'room': ('room', 'raum'),
    'note': ('note', 'notiz'),
}

REQUIRED_FIELDS = ('class_id', 'day', 'slot', 'subject')

CLASS_TOKEN_RE = re.compile(r'^[A-Z]{1,3}\d{2}$')
SLOT_TOKEN_RE = re.compile(r'^(\d{1,2})\.?$')
TEACHER_TOKEN_RE = re.compile(r'^[A-ZÄÖÜ]{2,6}$')


@dataclass
class LessonEntry:
    """One lesson candidate produced from a row."""
    class_id: str
    day_id: str
    slot_id: str
    subject: str
    teacher: str = ''
    room: str = ''
    note: str = ''
    is_special: bool = False
    source_text: str = ''

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.class_id, self.day_id, self.slot_id)

    def to_dict(self) -> Dict[str, str]:
        """Canonical lesson shape used inside the schedule model."""
        return {
            'slotId': self.slot_id,
            'subject': self.subject,
            'teacher': self.teacher,
            'room': self.room,
            'note': self.note,
        }


class Interpretation(NamedTuple):
    """Result of interpreting a sequence of rows."""
    entries: List[LessonEntry]
    class_ids: List[str]
    issues: List[str]
    special_events: List[Dict[str, str]]


# ─────────────────────────────────────────────────────────────
# Utility Functions
# ─────────────────────────────────────────────────────────────

def parse_token_line(text: str) -> Dict[str, str]:
    """
    Split ``key:value;key:value`` text into a dict with lower-cased keys.

    Parts without a colon or with an empty key are skipped; values keep any
    further colons (``note:ab 10:00``).
    """
    payload: Dict[str, str] = {}
    for part in (text or '').split(';'):
        key, sep, value = part.strip().partition(':')
        key = key.strip()
        if not sep or not key:
            continue
        payload[key.lower()] = value.strip()
    return payload


def normalize_slot(token: str) -> str:
    """``'3.'`` → ``'3'``; symbolic ids pass through trimmed."""
    value = clean_text(token)
    match = SLOT_TOKEN_RE.match(value)
    return match.group(1) if match else value


def map_day(token: str) -> Optional[str]:
    return DAY_MAP.get(clean_text(token).lower())


def is_special_event(subject: str, note: str, teacher: str, room: str,
                     keywords=DEFAULT_CONFIG.special_keywords) -> bool:
    """Projects, exams, cancellations and similar non-regular lessons."""
    text = f"{subject} {note}".lower()
    if any(keyword in text for keyword in keywords):
        return True
    return not teacher and not room and len(subject) > LONG_SUBJECT_LENGTH


def _field(payload: Dict[str, str], name: str) -> str:
    for alias in FIELD_ALIASES[name]:
        value = clean_text(payload.get(alias))
        if value:
            return value
    return ''


# ─────────────────────────────────────────────────────────────
# Row interpretation
# ─────────────────────────────────────────────────────────────

def _interpret_loose(text: str, config: TimetableConfig) -> Optional[LessonEntry]:
    """Positional fallback: ``<CLASS> <day> <slot> <subject...> [<TEACHER> <room...>]``."""
    tokens = text.split()

    class_idx = next((i for i, tok in enumerate(tokens) if CLASS_TOKEN_RE.match(tok)), -1)
    if class_idx < 0:
        return None

    day_idx = next(
        (i for i in range(class_idx + 1, len(tokens)) if map_day(tokens[i]) in config.day_ids),
        -1,
    )
    if day_idx < 0:
        return None

    slot_idx = next(
        (i for i in range(day_idx + 1, len(tokens)) if SLOT_TOKEN_RE.match(tokens[i])),
        -1,
    )
    if slot_idx < 0:
        return None

    after_slot = tokens[slot_idx + 1:]
    teacher_idx = next((i for i, tok in enumerate(after_slot) if TEACHER_TOKEN_RE.match(tok)), -1)
    if teacher_idx >= 0:
        subject = clean_text(' '.join(after_slot[:teacher_idx]))
        teacher = after_slot[teacher_idx]
        room = clean_text(' '.join(after_slot[teacher_idx + 1:]))
    else:
        subject = clean_text(' '.join(after_slot))
        teacher = room = ''
    if not subject:
        return None

    return LessonEntry(
        class_id=tokens[class_idx],
        day_id=map_day(tokens[day_idx]),
        slot_id=normalize_slot(tokens[slot_idx]),
        subject=subject,
        teacher=teacher,
        room=room,
        is_special=is_special_event(subject, '', teacher, room, config.special_keywords),
        source_text=text,
    )


def interpret_row(
    text: str,
    config: TimetableConfig = DEFAULT_CONFIG,
) -> Tuple[Optional[LessonEntry], List[str]]:
    """
    Decode one row into zero or one candidate plus diagnostics.

    Rows without any recognized field are treated as non-data text (page
    headers, legends) and yield neither an entry nor a diagnostic.
    """
    text = clean_text(text)
    if not text:
        return None, []

    fields = {name: _field(parse_token_line(text), name) for name in FIELD_ALIASES}
    if not any(fields.values()):
        return _interpret_loose(text, config), []

    missing = [name for name in REQUIRED_FIELDS if not fields[name]]
    if missing:
        return None, [f'Incomplete row (missing {", ".join(missing)}): "{text}"']

    day_id = map_day(fields['day'])
    if day_id is None or day_id not in config.day_ids:
        return None, [f'Unknown day token "{fields["day"]}" in row: "{text}"']

    subject, teacher, room, note = (fields[k] for k in ('subject', 'teacher', 'room', 'note'))
    entry = LessonEntry(
        class_id=fields['class_id'].upper(),
        day_id=day_id,
        slot_id=normalize_slot(fields['slot']),
        subject=subject,
        teacher=teacher,
        room=room,
        note=note,
        is_special=is_special_event(subject, note, teacher, room, config.special_keywords),
        source_text=text,
    )
    return entry, []


def interpret_rows(
    rows: List[Union[Row, str]],
    config: TimetableConfig = DEFAULT_CONFIG,
) -> Interpretation:
    """Interpret every row, collecting class ids in first-seen order."""
    entries: List[LessonEntry] = []
    issues: List[str] = []
    class_ids: Dict[str, None] = {}
    special_events: List[Dict[str, str]] = []

    for row in rows:
        text = row.text if isinstance(row, Row) else row
        entry, row_issues = interpret_row(text, config)
        issues.extend(row_issues)
        if entry is None:
            continue
        class_ids.setdefault(entry.class_id, None)
        entries.append(entry)
        if entry.is_special:
            special_events.append({
                'classId': entry.class_id,
                'dayId': entry.day_id,
                'slotId': entry.slot_id,
                'label': entry.subject,
                'note': entry.note,
            })

    logger.info(
        "Interpreted %d entries for %d classes from %d rows (%d issues).",
        len(entries), len(class_ids), len(rows), len(issues),
    )
    return Interpretation(entries, list(class_ids), issues, special_events)
