"""
Timetable Ingest Settings
=========================
Immutable configuration values injected into every pipeline stage.

Pass an alternative ``TimetableConfig`` to any stage to swap the class
roster, weekday ids or fallback timeslots::

    config = dataclasses.replace(DEFAULT_CONFIG, class_ids=('5A', '5B'))
    result = normalize_timetable(raw, config)
"""

from dataclasses import dataclass, field
from typing import Tuple


# ─────────────────────────────────────────────────────────────
# Tunable Thresholds
# ─────────────────────────────────────────────────────────────

ROW_Y_TOLERANCE: float = 2.0
MIN_ENTRIES: int = 10
SUBJECT_PLACEHOLDER: str = "—"
LONG_SUBJECT_LENGTH: int = 20


@dataclass(frozen=True)
class Timeslot:
    """A period label; ``id`` is the join key used by lesson entries."""
    id: str
    time: str

    def to_dict(self):
        return {'id': self.id, 'time': self.time}


DEFAULT_TIMESLOTS: Tuple[Timeslot, ...] = (
    Timeslot('1', '08:00–08:45'),
    Timeslot('2', '08:45–09:30'),
    Timeslot('3', '09:50–10:35'),
    Timeslot('4', '10:35–11:20'),
    Timeslot('5', '11:40–12:25'),
    Timeslot('6', '12:25–13:10'),
    Timeslot('7', 'Mittagspause'),
    Timeslot('8', '14:10–14:55'),
    Timeslot('9', '14:55–15:40'),
)

DEFAULT_CLASS_IDS: Tuple[str, ...] = ('HT11', 'HT12', 'HT21', 'HT22', 'G11', 'G21', 'GT01')

DAY_IDS: Tuple[str, ...] = ('mo', 'di', 'mi', 'do', 'fr')

SPECIAL_KEYWORDS: Tuple[str, ...] = (
    'projekt', 'projekttag', 'blockunterricht', 'block', 'prüfung', 'klausur', 'ausfall',
    'entfall', 'exkursion', 'interne', 'schulung', 'serviceteam', 'praktikum',
)


@dataclass(frozen=True)
class QualityThresholds:
    """Minimums a full school timetable must reach before it is published."""
    min_entries: int = 80
    min_class_day_coverage: int = 20
    min_class_entries: int = 8
    class_median_ratio: float = 0.35
    min_days_per_class: int = 2


DEFAULT_QUALITY = QualityThresholds()


@dataclass(frozen=True)
class TimetableConfig:
    """Roster, calendar and threshold values for one ingestion run."""
    class_ids: Tuple[str, ...] = DEFAULT_CLASS_IDS
    day_ids: Tuple[str, ...] = DAY_IDS
    timeslots: Tuple[Timeslot, ...] = DEFAULT_TIMESLOTS
    y_tolerance: float = ROW_Y_TOLERANCE
    min_entries: int = MIN_ENTRIES
    subject_placeholder: str = SUBJECT_PLACEHOLDER
    special_keywords: Tuple[str, ...] = field(default=SPECIAL_KEYWORDS)

    def default_timeslots(self):
        """Fresh list-of-dicts copy of the fallback timeslots."""
        return [slot.to_dict() for slot in self.timeslots]

    def empty_classes(self, class_ids=None):
        """``{classId: {dayId: []}}`` for the given (or default) roster."""
        ids = self.class_ids if class_ids is None else class_ids
        return {class_id: {day_id: [] for day_id in self.day_ids} for class_id in ids}


DEFAULT_CONFIG = TimetableConfig()
