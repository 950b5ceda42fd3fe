"""
Timetable Ground-Truth Comparator
=================================
Compare a produced canonical timetable JSON against a manually verified one
and report lesson-level accuracy.

Lessons are aligned on (classId, dayId, slotId) rather than list position, so
a missing lesson does not shift every following comparison.
"""

import json
import sys
from typing import Dict, List

import pandas as pd

from validator import LESSON_COLUMNS, flatten_model

# Key columns used to align extracted lessons with ground-truth lessons.
ALIGN_KEYS = ['classId', 'dayId', 'slotId']
COMPARE_COLUMNS = [c for c in LESSON_COLUMNS if c not in ALIGN_KEYS]
MAX_LISTED_MISMATCHES = 80


def _normalise(val: object) -> str:
    """Normalise a value to a comparable string."""
    if val is None or (isinstance(val, float) and pd.isna(val)):
        return ''
    return ' '.join(str(val).split())


def compare_models(extracted: Dict, ground_truth: Dict) -> str:
    """Compare two canonical models and return a Markdown accuracy report."""
    df_ext = pd.DataFrame(flatten_model(extracted), columns=LESSON_COLUMNS)
    df_truth = pd.DataFrame(flatten_model(ground_truth), columns=LESSON_COLUMNS)

    merged = pd.merge(
        df_truth,
        df_ext,
        on=ALIGN_KEYS,
        how='outer',
        suffixes=('_truth', '_ext'),
        indicator=True,
    )

    matched = merged[merged['_merge'] == 'both']
    only_truth = merged[merged['_merge'] == 'left_only']
    only_ext = merged[merged['_merge'] == 'right_only']

    total_cells = 0
    matching_cells = 0
    mismatches: List[str] = []
    per_col_match: Dict[str, int] = {c: 0 for c in COMPARE_COLUMNS}
    per_col_total: Dict[str, int] = {c: 0 for c in COMPARE_COLUMNS}

    for _, row in matched.iterrows():
        for col in COMPARE_COLUMNS:
            val_truth = _normalise(row[f"{col}_truth"])
            val_ext = _normalise(row[f"{col}_ext"])
            total_cells += 1
            per_col_total[col] += 1
            if val_truth == val_ext:
                matching_cells += 1
                per_col_match[col] += 1
            else:
                key_desc = '/'.join(str(row[k]) for k in ALIGN_KEYS)
                mismatches.append(f"  [{key_desc}] {col}: expected '{val_truth}', got '{val_ext}'")

    accuracy = (matching_cells / total_cells * 100) if total_cells > 0 else 0

    lines = [
        "# Accuracy Report",
        "",
        f"Overall Accuracy: **{accuracy:.2f}%**  ({matching_cells}/{total_cells} cells)",
        "",
        f"- Lessons in ground truth: {len(df_truth)}",
        f"- Lessons in extracted:    {len(df_ext)}",
        f"- Matched lessons:         {len(matched)}",
        f"- Only in truth:           {len(only_truth)}",
        f"- Only in extracted:       {len(only_ext)}",
        "",
        "## Per-Column Accuracy",
    ]
    for col in COMPARE_COLUMNS:
        ct = per_col_total[col]
        cm = per_col_match[col]
        pct = (cm / ct * 100) if ct > 0 else 0
        lines.append(f"- **{col}**: {pct:.1f}%  ({cm}/{ct})")

    if len(only_truth):
        lines.append("")
        lines.append("## Missing Lessons")
        for _, row in only_truth.head(MAX_LISTED_MISMATCHES).iterrows():
            lines.append(f"  {row['classId']}/{row['dayId']}/{row['slotId']}: {row['subject_truth']}")

    lines.append("")
    lines.append(f"## Mismatches ({len(mismatches)})")
    lines.extend(mismatches[:MAX_LISTED_MISMATCHES])
    if len(mismatches) > MAX_LISTED_MISMATCHES:
        lines.append(f"  ... and {len(mismatches) - MAX_LISTED_MISMATCHES} more.")

    return "\n".join(lines)


def compare_results(extracted_path: str, ground_truth_path: str) -> str:
    """Load two canonical timetable JSON files and compare them."""
    try:
        with open(extracted_path, 'r', encoding='utf-8') as f:
            extracted = json.load(f)
        with open(ground_truth_path, 'r', encoding='utf-8') as f:
            ground_truth = json.load(f)
    except FileNotFoundError as e:
        return f"Error: File not found — {e}"

    return compare_models(extracted, ground_truth)


if __name__ == "__main__":
    if len(sys.argv) == 3:
        print(compare_results(sys.argv[1], sys.argv[2]))
    else:
        print("Usage: python compare_truth.py <extracted.json> <truth.json>")
