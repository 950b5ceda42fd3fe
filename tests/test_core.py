"""
Unit tests for the row → entry → model stages.

Covers rows.py, interpreter.py, validator.py and assembler.py.
Run with:  python -m pytest tests/ -v
"""

import os
import random
import sys

import pytest

# Ensure src/ is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from assembler import assemble_model, slot_sort_key
from interpreter import (
    LessonEntry,
    interpret_row,
    interpret_rows,
    normalize_slot,
    parse_token_line,
)
from rows import Row, RowStrategy, Token, coerce_tokens, reconstruct_rows
from settings import DEFAULT_CONFIG, QualityThresholds, TimetableConfig
from validator import (
    build_report,
    check_quality,
    has_entries,
    imbalance_penalty,
    summarize_quality,
    validate_entries,
)


def _entry(class_id='HT11', day_id='mo', slot_id='1', subject='Deutsch', **kw):
    return LessonEntry(class_id, day_id, slot_id, subject, **kw)


def _unique_entries(n, class_id='HT11'):
    days = ['mo', 'di', 'mi', 'do', 'fr']
    return [_entry(class_id, days[i % 5], str(i // 5 + 1), f'Fach {i}') for i in range(n)]


# ─────────────────────────────────────────────────────────────
# Row Reconstructor
# ─────────────────────────────────────────────────────────────

class TestReconstructRows:

    ITEMS = [
        {'str': 'Deutsch', 'x': 120, 'y': 50.4},
        {'str': 'HT11', 'x': 10, 'y': 50},
        {'str': 'MEL', 'x': 200, 'y': 51.1},
        {'str': 'HT12', 'x': 10, 'y': 70},
        {'str': 'Mathe', 'x': 120, 'y': 69},
        {'str': 'Kopfzeile', 'x': 10, 'y': 5},
    ]

    def test_groups_by_vertical_proximity(self):
        rows = reconstruct_rows(self.ITEMS)
        assert [r.text for r in rows] == ['Kopfzeile', 'HT11 Deutsch MEL', 'HT12 Mathe']

    def test_tokens_ordered_by_x(self):
        rows = reconstruct_rows(self.ITEMS)
        assert [t.x for t in rows[1].tokens] == [10, 120, 200]

    def test_order_independent(self):
        expected = reconstruct_rows(self.ITEMS)
        shuffled = list(self.ITEMS)
        random.Random(7).shuffle(shuffled)
        again = reconstruct_rows(shuffled)
        assert [(r.y, r.text) for r in again] == [(r.y, r.text) for r in expected]

    def test_running_average(self):
        rows = reconstruct_rows([
            {'str': 'a', 'x': 0, 'y': 10},
            {'str': 'b', 'x': 1, 'y': 12},
            {'str': 'c', 'x': 2, 'y': 13},
        ])
        assert len(rows) == 1
        assert rows[0].y == pytest.approx(12.0)

    def test_tolerance_is_tunable(self):
        items = [{'str': 'a', 'x': 0, 'y': 10}, {'str': 'b', 'x': 1, 'y': 11.5}]
        assert len(reconstruct_rows(items)) == 1
        assert len(reconstruct_rows(items, tolerance=1.0)) == 2

    def test_discards_malformed_tokens(self):
        items = [
            {'str': '   ', 'x': 0, 'y': 0},
            {'str': 'nan-y', 'x': 0, 'y': float('nan')},
            {'str': 'inf-x', 'x': float('inf'), 'y': 1},
            {'str': 'text-x', 'x': 'abc', 'y': 1},
            {'str': 'no-y', 'x': 1},
            'not a token',
            None,
            {'text': 'kept', 'x': '3', 'y': '4'},
        ]
        rows = reconstruct_rows(items)
        assert [r.text for r in rows] == ['kept']

    def test_collapses_whitespace(self):
        rows = reconstruct_rows([
            {'str': ' class:HT11;  day:mo ', 'x': 0, 'y': 1},
            {'str': 'slot:1', 'x': 9, 'y': 1},
        ])
        assert rows[0].text == 'class:HT11; day:mo slot:1'

    @pytest.mark.parametrize("items", [None, [], [{'str': '', 'x': 1, 'y': 1}]])
    def test_empty_input(self, items):
        assert reconstruct_rows(items) == []

    def test_custom_strategy(self):
        class OneRowPerToken(RowStrategy):
            def group(self, tokens):
                return [Row(y=t.y, tokens=[t]) for t in tokens]

        rows = reconstruct_rows(self.ITEMS, strategy=OneRowPerToken())
        assert len(rows) == len(self.ITEMS)

    def test_coerce_accepts_tokens(self):
        assert coerce_tokens([Token('a', 1.0, 2.0)]) == [Token('a', 1.0, 2.0)]


# ─────────────────────────────────────────────────────────────
# Row Interpreter
# ─────────────────────────────────────────────────────────────

class TestParseTokenLine:

    def test_skips_unparseable_parts(self):
        payload = parse_token_line('foo; :bar;Class:HT11;note:ab 10:00;;')
        assert payload == {'class': 'HT11', 'note': 'ab 10:00'}

    @pytest.mark.parametrize("inp,expected", [("3.", "3"), (" 10 ", "10"), ("A2", "A2")])
    def test_normalize_slot(self, inp, expected):
        assert normalize_slot(inp) == expected


class TestInterpretRow:

    def test_keyed_row(self):
        entry, issues = interpret_row('class:ht11;day:mo;slot:1;subject:Deutsch;teacher:MEL;room:6')
        assert issues == []
        assert entry.key == ('HT11', 'mo', '1')
        assert (entry.subject, entry.teacher, entry.room, entry.note) == ('Deutsch', 'MEL', '6', '')

    def test_german_aliases(self):
        entry, issues = interpret_row(
            'Klasse:HT12; Tag:Dienstag; Stunde:3.; Fach:Mathe; Lehrer:TAM; Raum:5; Notiz:Doppelstunde')
        assert issues == []
        assert entry.key == ('HT12', 'di', '3')
        assert entry.note == 'Doppelstunde'

    @pytest.mark.parametrize("day,expected", [
        ("Montag", "mo"), ("MI", "mi"), ("donnerstag", "do"), ("Fr", "fr"),
    ])
    def test_day_table(self, day, expected):
        entry, _ = interpret_row(f'class:HT11;day:{day};slot:1;subject:X')
        assert entry.day_id == expected

    def test_unknown_day_is_reported(self):
        entry, issues = interpret_row('class:HT11;day:samstag;slot:1;subject:Sport')
        assert entry is None
        assert len(issues) == 1
        assert 'Unknown day token' in issues[0]

    def test_missing_required_field(self):
        entry, issues = interpret_row('class:HT11;day:mo;slot:1;teacher:MEL')
        assert entry is None
        assert 'subject' in issues[0]

    @pytest.mark.parametrize("text", ["Stundenplan 2. Halbjahr", "Stand: 20.02.2026", "", "   "])
    def test_non_data_rows_are_silent(self, text):
        assert interpret_row(text) == (None, [])

    def test_loose_row(self):
        entry, issues = interpret_row('HT11 Mo 1 Deutsch Grundkurs MEL 6')
        assert issues == []
        assert entry.key == ('HT11', 'mo', '1')
        assert (entry.subject, entry.teacher, entry.room) == ('Deutsch Grundkurs', 'MEL', '6')

    def test_loose_row_without_teacher(self):
        entry, _ = interpret_row('G21 fr 8. Sport')
        assert entry.key == ('G21', 'fr', '8')
        assert (entry.subject, entry.teacher, entry.room) == ('Sport', '', '')

    def test_special_event_keyword(self):
        entry, _ = interpret_row('class:HT11;day:mo;slot:1;subject:Projekttag;teacher:MEL')
        assert entry.is_special is True

    def test_long_subject_without_teacher_or_room_is_special(self):
        entry, _ = interpret_row('class:HT11;day:mo;slot:1;subject:Betriebsbesichtigung Hannover')
        assert entry.is_special is True

    def test_regular_lesson_not_special(self):
        entry, _ = interpret_row('class:HT11;day:mo;slot:1;subject:Deutsch;teacher:MEL')
        assert entry.is_special is False


class TestInterpretRows:

    def test_collects_class_ids_in_order(self):
        result = interpret_rows([
            'class:HT12;day:mo;slot:1;subject:A',
            'Kopfzeile',
            'class:HT11;day:mo;slot:1;subject:B',
            'class:HT12;day:di;slot:1;subject:C',
        ])
        assert result.class_ids == ['HT12', 'HT11']
        assert len(result.entries) == 3
        assert result.issues == []

    def test_accepts_row_objects_and_collects_specials(self):
        rows = [Row(y=1, text='class:HT11;day:mo;slot:2;subject:Klausur Mathe;teacher:TAM')]
        result = interpret_rows(rows)
        assert result.special_events == [{
            'classId': 'HT11', 'dayId': 'mo', 'slotId': '2', 'label': 'Klausur Mathe', 'note': '',
        }]

    def test_issues_accumulate(self):
        result = interpret_rows([
            'class:HT11;day:xx;slot:1;subject:A',
            'class:HT11;day:yy;slot:2;subject:B',
        ])
        assert result.entries == []
        assert len(result.issues) == 2


# ─────────────────────────────────────────────────────────────
# Entry Validator
# ─────────────────────────────────────────────────────────────

class TestValidateEntries:

    def test_pass_with_enough_unique_entries(self):
        result = validate_entries(_unique_entries(10))
        assert result.ok is True
        assert result.issues == []
        assert len(result.entries) == 10

    def test_duplicate_keeps_first(self):
        entries = _unique_entries(10) + [_entry('HT11', 'mo', '1', 'Spätere Stunde')]
        baseline = validate_entries(_unique_entries(10))
        result = validate_entries(entries)
        assert len(result.entries) == 10
        assert result.entries[0].subject == 'Fach 0'
        assert len(result.issues) == len(baseline.issues) + 1
        assert 'Duplicate entry HT11|mo|1' in result.issues[0]
        assert result.ok is False

    def test_one_issue_per_dropped_duplicate(self):
        entries = _unique_entries(10) + [_entry(subject='B'), _entry(subject='C')]
        result = validate_entries(entries)
        assert len(result.issues) == 2

    def test_too_few_entries(self):
        result = validate_entries(_unique_entries(3))
        assert result.ok is False
        assert 'Too few entries (3)' in result.issues[0]

    def test_custom_minimum(self):
        assert validate_entries(_unique_entries(3), min_entries=3).ok is True

    @pytest.mark.parametrize("entries", [None, []])
    def test_empty(self, entries):
        result = validate_entries(entries)
        assert result.ok is False
        assert result.entries == []


class TestQualityAndReport:

    MODEL = {
        'classIds': ['HT11', 'HT12'],
        'classes': {
            'HT11': {'mo': [{'slotId': '1', 'subject': 'Deutsch', 'teacher': 'MEL', 'room': '6', 'note': ''},
                            {'slotId': '2', 'subject': 'Mathe', 'teacher': '', 'room': '', 'note': ''}],
                     'di': []},
            'HT12': {'mo': [], 'di': []},
        },
    }

    def test_summarize_quality(self):
        stats = summarize_quality(self.MODEL)
        assert stats['entries'] == 2
        assert stats['with_teacher'] == 1
        assert stats['with_room'] == 1
        assert stats['class_day_coverage'] == 1
        assert stats['entries_by_class'] == {'HT11': 2, 'HT12': 0}

    def test_summarize_empty_model(self):
        stats = summarize_quality({'classes': {}})
        assert stats['entries'] == 0
        assert stats['class_day_coverage'] == 0

    def test_has_entries(self):
        assert has_entries(self.MODEL['classes']) is True
        assert has_entries({'HT11': {'mo': []}}) is False
        assert has_entries(None) is False

    def test_report_passed(self):
        result = build_report([], self.MODEL, True)
        assert result.success is True
        assert "PASSED" in result.report
        assert "**Total Entries**: 2" in result.report

    def test_report_failed_lists_issues(self):
        result = build_report(['Too few entries (2)'], self.MODEL, False, source='parsed')
        assert result.success is False
        assert "FAILED" in result.report
        assert "- Too few entries (2)" in result.report
        assert "**Source**: parsed" in result.report

    def test_report_caps_issue_list(self):
        issues = [f'issue {i}' for i in range(40)]
        result = build_report(issues, self.MODEL, False)
        assert "... and 15 more." in result.report


def _model(counts, days=('mo', 'di', 'mi', 'do', 'fr')):
    """``{classId: n}`` → a model with ``n`` lessons per class spread over ``days``."""
    classes = {}
    for class_id, n in counts.items():
        classes[class_id] = {d: [] for d in DEFAULT_CONFIG.day_ids}
        for i in range(n):
            classes[class_id][days[i % len(days)]].append(
                {'slotId': str(i // len(days) + 1), 'subject': 'Fach', 'teacher': 'MEL', 'room': '1', 'note': ''})
    return {'classIds': list(counts), 'classes': classes}


class TestQualityGate:

    FULL = {c: 15 for c in DEFAULT_CONFIG.class_ids}

    def test_full_timetable_passes(self):
        assert check_quality(_model(self.FULL)) == []

    def test_small_timetable_rejected(self):
        issues = check_quality(_model({'HT11': 10, 'HT12': 10}))
        assert any('quality too low: only 20 entries' in i for i in issues)
        assert any('coverage too low: 10 class-day cells' in i for i in issues)

    def test_underfilled_class_rejected(self):
        model = _model(self.FULL)
        model['classes']['GT01'] = _model({'GT01': 2}, days=('mo',))['classes']['GT01']
        issues = check_quality(model)
        assert issues == [
            'Class GT01 has suspiciously few entries (2; expected at least 8).',
            'Class GT01 has too little day coverage (1; expected at least 2).',
        ]

    def test_thresholds_are_injectable(self):
        relaxed = QualityThresholds(min_entries=1, min_class_day_coverage=1,
                                    min_class_entries=1, min_days_per_class=1)
        assert check_quality(_model({'HT11': 3}), relaxed) == []

    def test_day_coverage_by_class(self):
        stats = summarize_quality(_model({'HT11': 4, 'HT12': 0}, days=('mo', 'di')))
        assert stats['day_coverage_by_class'] == {'HT11': 2, 'HT12': 0}

    @pytest.mark.parametrize("counts,expected", [
        ({'A': 10, 'B': 10, 'C': 2}, 4.5),
        ({'A': 10, 'B': 10}, 0.0),
        ({}, 0.0),
        ({'A': 0, 'B': 0}, 0.0),
    ])
    def test_imbalance_penalty(self, counts, expected):
        assert imbalance_penalty({'entries_by_class': counts}) == pytest.approx(expected)

    def test_report_shows_imbalance(self):
        result = build_report([], _model({'A': 10, 'B': 10, 'C': 2}), True)
        assert "**Class Imbalance**: 4.5" in result.report


# ─────────────────────────────────────────────────────────────
# Model Assembler
# ─────────────────────────────────────────────────────────────

class TestSlotOrdering:

    @pytest.mark.parametrize("inp,expected", [
        (['10', '2', '1', 'x'], ['1', '2', '10', 'x']),
        (['A2', '10', '2'], ['2', '10', 'A2']),
        (['b', 'a', '3'], ['3', 'a', 'b']),
        (['²', '1'], ['1', '²']),
    ])
    def test_numeric_first(self, inp, expected):
        assert sorted(inp, key=slot_sort_key) == expected

    def test_key_ordering(self):
        assert slot_sort_key('2') < slot_sort_key('10')
        assert slot_sort_key('x') > slot_sort_key('10')
        assert slot_sort_key(' 3 ') == slot_sort_key('3')


class TestAssembleModel:

    def test_default_roster_when_no_classes_observed(self):
        model = assemble_model([], [])
        assert list(model['classes']) == list(DEFAULT_CONFIG.class_ids)
        for days in model['classes'].values():
            assert list(days) == list(DEFAULT_CONFIG.day_ids)

    def test_entries_sorted_and_shaped(self):
        entries = [_entry(slot_id='10', subject='C'), _entry(slot_id='2', subject='B'),
                   _entry(slot_id='A1', subject='D'), _entry(slot_id='1', subject='A')]
        model = assemble_model(entries, ['HT11'])
        assert [l['slotId'] for l in model['classes']['HT11']['mo']] == ['1', '2', '10', 'A1']
        assert model['classes']['HT11']['mo'][0] == {
            'slotId': '1', 'subject': 'A', 'teacher': '', 'room': '', 'note': '',
        }
        assert model['classes']['HT11']['fr'] == []

    def test_meta_attached_verbatim(self):
        meta = {'source': 'plan.pdf', 'parser': 'pdf-tokens'}
        assert assemble_model([], ['HT11'], meta)['meta'] == meta

    def test_unlisted_class_is_added(self):
        model = assemble_model([_entry(class_id='G11')], ['HT11'])
        assert set(model['classes']) == {'HT11', 'G11'}

    def test_injected_roster(self):
        config = TimetableConfig(class_ids=('5A', '5B'))
        model = assemble_model([], None, config=config)
        assert list(model['classes']) == ['5A', '5B']
