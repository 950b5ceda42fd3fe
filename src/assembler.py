"""
Model Assembler
===============
Groups validated lesson entries into the ``{classId: {dayId: [lesson]}}``
schedule shape, ordered by slot id.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from interpreter import LessonEntry
from settings import DEFAULT_CONFIG, TimetableConfig

logger = logging.getLogger(__name__)


def slot_sort_key(slot_id: Any) -> Tuple:
    """
    Numeric-first ordering key for slot ids.

    Numeric ids sort numerically and precede every symbolic id; symbolic ids
    (and numeric ties such as ``'2'``/``'02'``) fall back to string order.
    """
    value = str(slot_id).strip()
    if value.isascii() and value.isdigit():
        return (0, int(value), value)
    return (1, 0, value)


def assemble_model(
    entries: List[LessonEntry],
    class_ids: Optional[List[str]] = None,
    meta: Optional[Dict[str, Any]] = None,
    config: TimetableConfig = DEFAULT_CONFIG,
) -> Dict[str, Any]:
    """
    Build the schedule shape from validated entries.

    Every known class gets all weekday keys, even when empty. Without
    observed class ids the configured default roster is used; entries of a
    class outside the list still get that class added. ``meta`` is attached
    as given.
    """
    known = list(class_ids) if class_ids else list(config.class_ids)
    classes = config.empty_classes(known)

    for entry in entries:
        days = classes.setdefault(entry.class_id, {day_id: [] for day_id in config.day_ids})
        days.setdefault(entry.day_id, []).append(entry.to_dict())

    for days in classes.values():
        for lessons in days.values():
            lessons.sort(key=lambda lesson: slot_sort_key(lesson['slotId']))

    logger.debug("Assembled %d entries into %d classes.", len(entries), len(classes))
    return {'meta': meta if meta is not None else {}, 'classes': classes}
