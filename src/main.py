"""
Timetable Ingest — CLI Entry Point
==================================
``parse``  : turn a timetable PDF (its raw positioned-token JSON, or the latest
             plan PDF in a directory) into a canonical timetable JSON plus a
             Markdown validation report.
``select`` : load the hand-authored timetable and the raw document, and
             write whichever of the two is authoritative.
"""

import argparse
import dataclasses
import json
import logging
import os
import re
import sys
import unicodedata
from typing import Any, Dict, List, Optional

from arbitrator import NoTimetableSourceError
from extractor import TokenExtractor
from normalizer import normalize_timetable
from pipeline import load_timetable_source, parse_document, read_json
from settings import DEFAULT_CONFIG, DEFAULT_QUALITY, QualityThresholds, TimetableConfig
from validator import build_report, check_quality

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

def write_json(path: str, data: Any) -> None:
    """Write JSON atomically (temp file + rename)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp_path, path)


def load_raw_document(input_path: str) -> Any:
    """A PDF is extracted with pdfplumber; anything else is read as raw-items JSON."""
    if input_path.lower().endswith(".pdf"):
        return TokenExtractor(input_path).to_document()
    return read_json(input_path)


def build_config(args: argparse.Namespace) -> TimetableConfig:
    overrides = {}
    if getattr(args, "tolerance", None) is not None:
        overrides["y_tolerance"] = args.tolerance
    if getattr(args, "min_entries", None) is not None:
        overrides["min_entries"] = args.min_entries
    return dataclasses.replace(DEFAULT_CONFIG, **overrides)


# ─────────────────────────────────────────────────────────────
# Plan discovery
# ─────────────────────────────────────────────────────────────

PLAN_KEYWORD_RE = re.compile(r'(stundenplan|plan|kw|hj|sonderplan|vertretung)')
WEEK_HINT_RE = re.compile(r'kw[_\s-]?([0-9]{1,2})')


def normalize_name(name: str) -> str:
    """Lower-case and strip accents so ``Stundenplan_KW07_Ü.pdf`` matches plainly."""
    decomposed = unicodedata.normalize("NFKD", str(name or "")).lower()
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def has_schedule_keyword(name: str) -> bool:
    return PLAN_KEYWORD_RE.search(normalize_name(name)) is not None


def extract_week_hint(name: str) -> Optional[int]:
    """Calendar week from a ``KW<n>`` marker in the file name, if any."""
    match = WEEK_HINT_RE.search(normalize_name(name))
    return int(match.group(1)) if match else None


def list_pdf_files(directory: str) -> List[Dict[str, Any]]:
    """PDFs in ``directory``, newest first."""
    if not os.path.isdir(directory):
        return []
    files = []
    for name in os.listdir(directory):
        if not name.lower().endswith(".pdf"):
            continue
        path = os.path.join(directory, name)
        files.append({
            "name": name,
            "path": path,
            "mtime": os.path.getmtime(path),
            "week_hint": extract_week_hint(name),
            "is_plan": has_schedule_keyword(name),
        })
    files.sort(key=lambda f: f["mtime"], reverse=True)
    return files


def pick_latest_pdf(directory: str) -> Optional[str]:
    """
    Choose the current timetable PDF in ``directory``.

    Files named like a plan win over other PDFs; among those, the highest
    calendar-week hint wins, then the newest modification time. Without any
    plan-like name the newest PDF is used.
    """
    files = list_pdf_files(directory)
    if not files:
        return None
    plans = [f for f in files if f["is_plan"]]
    if not plans:
        return files[0]["path"]
    with_week = [f for f in plans if f["week_hint"] is not None]
    if with_week:
        with_week.sort(key=lambda f: (f["week_hint"], f["mtime"]), reverse=True)
        return with_week[0]["path"]
    return plans[0]["path"]


def process_document(
    input_path: str,
    output_dir: str,
    config: TimetableConfig,
    quality: Optional[QualityThresholds] = None,
) -> bool:
    """
    Parse + normalize one input; write model and report. Returns success.

    With ``quality`` thresholds the timetable must also pass the quality gate.
    """
    basename = os.path.basename(input_path)
    print(f"\n{'='*60}")
    print(f"📄 Processing: {basename}")
    print(f"{'='*60}")

    try:
        raw = load_raw_document(input_path)
    except Exception as e:
        logger.exception("Extraction failed for %s", basename)
        print(f"   ❌ Error during extraction: {e}")
        return False

    parsed = parse_document(raw, config)
    normalized = normalize_timetable(parsed.model, config)
    ok = parsed.ok and normalized.ok
    issues = parsed.issues + normalized.issues
    print(f"   - Rows: {parsed.debug['rowCount']}, entries: {parsed.debug['interpretedCount']}, "
          f"special events: {parsed.debug['specialEventCount']}")

    if quality is not None:
        gate_issues = check_quality(normalized.model, quality)
        if gate_issues:
            print(f"   🚫 Quality gate rejected the timetable ({len(gate_issues)} issue(s)).")
            issues.extend(gate_issues)
            ok = False

    stem = os.path.splitext(basename)[0]
    model_path = os.path.join(output_dir, f"{stem}.timetable.json")
    report_path = os.path.join(output_dir, f"{stem}.validation.md")

    write_json(model_path, normalized.model)
    print(f"   💾 Timetable saved: {os.path.basename(model_path)}")

    result = build_report(issues, normalized.model, ok, source="parsed")
    with open(report_path, "w", encoding="utf-8") as f:
        f.write(result.report)
    print(f"   📝 Report saved: {os.path.basename(report_path)}")

    if result.success:
        print("   ✨ PASSED: timetable is usable.")
    else:
        print("   ⚠️  WARNING: Issues found. See report.")
    return result.success


# ─────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────

def cmd_parse(args: argparse.Namespace) -> int:
    config = build_config(args)
    input_path = args.input
    gate = args.quality_gate

    if os.path.isdir(input_path):
        chosen = pick_latest_pdf(input_path)
        if chosen is None:
            print(f"❌ No PDF files found in '{input_path}'.")
            return 1
        print(f"📂 Latest plan in {input_path}: {os.path.basename(chosen)}")
        output_dir = args.output_dir or input_path
        input_path = chosen
        # Directory runs are gated unless --no-quality-gate is given.
        if gate is None:
            gate = True
    else:
        output_dir = args.output_dir or os.path.dirname(os.path.abspath(input_path))

    quality = DEFAULT_QUALITY if gate else None
    return 0 if process_document(input_path, output_dir, config, quality) else 1


def cmd_select(args: argparse.Namespace) -> int:
    config = build_config(args)
    try:
        selection = load_timetable_source(
            lambda: read_json(args.canonical),
            lambda: load_raw_document(args.document),
            timeout=args.timeout,
            config=config,
        )
    except NoTimetableSourceError as e:
        print("❌ No timetable source available:")
        for note in e.notes:
            print(f"   - {note}")
        return 1

    print(f"✅ Using {selection.source} timetable.")
    for note in selection.notes:
        print(f"   - {note}")

    write_json(args.output, {
        **selection.model,
        "debug": {"source": selection.source, "ok": selection.ok,
                  "issues": selection.issues, "notes": selection.notes},
    })
    print(f"💾 Written: {args.output}")
    return 0


# ─────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Timetable Ingest — positioned-text timetable documents to canonical JSON.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG-level) logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_parse = sub.add_parser("parse", help="Parse a PDF or raw-items JSON into a canonical timetable.")
    p_parse.add_argument("input", help="Timetable PDF, raw positioned-token JSON, or a directory "
                                       "of plan PDFs (the latest one is parsed).")
    p_parse.add_argument("-o", "--output-dir", default=None,
                         help="Directory for timetable JSON + report. Default: next to input.")
    p_parse.add_argument("--quality-gate", action=argparse.BooleanOptionalAction, default=None,
                         help="Reject timetables below the publishing quality thresholds. "
                              "Default: on for directories, off for single files.")
    p_parse.set_defaults(func=cmd_parse)

    p_select = sub.add_parser("select", help="Choose between canonical timetable and parsed document.")
    p_select.add_argument("--canonical", required=True, help="Hand-authored timetable JSON.")
    p_select.add_argument("--document", required=True, help="Timetable PDF or raw positioned-token JSON.")
    p_select.add_argument("-o", "--output", default="timetable.json", help="Output JSON path.")
    p_select.add_argument("--timeout", type=float, default=None,
                          help="Seconds to wait for both sources before giving up on the missing ones.")
    p_select.set_defaults(func=cmd_select)

    for p in (p_parse, p_select):
        p.add_argument("--tolerance", type=float, default=None,
                       help=f"Row clustering y-tolerance (default {DEFAULT_CONFIG.y_tolerance}).")
        p.add_argument("--min-entries", type=int, default=None,
                       help=f"Minimum entries for a valid parse (default {DEFAULT_CONFIG.min_entries}).")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
