"""Bulk question import from CSV uploads (headers: text,a,b,c,d,correct)."""

from __future__ import annotations

import csv
import io
from typing import Any, Dict, List, Tuple, Union

from scoring import OPTION_LABELS, normalize_label

REQUIRED_HEADERS = ("text", "a", "b", "c", "d", "correct")


def _decode(raw: Union[bytes, str]) -> str:
    if isinstance(raw, bytes):
        # Spreadsheet exports often carry a UTF-8 BOM
        return raw.decode("utf-8-sig", errors="replace")
    return raw.lstrip("\ufeff")


def parse_question_csv(raw: Union[bytes, str]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Returns (questions, skipped). Each question is
    {question_text, option_a..option_d, correct_answer}. Rows with no text or a
    correct label outside A-D are skipped. Header names are case-insensitive.
    """
    reader = csv.DictReader(io.StringIO(_decode(raw)))
    if not reader.fieldnames:
        return [], 0
    headers = {(h or "").strip().lower(): h for h in reader.fieldnames}
    missing = [h for h in REQUIRED_HEADERS if h not in headers]
    if missing:
        raise ValueError(f"CSV is missing columns: {', '.join(missing)}")

    out: List[Dict[str, Any]] = []
    skipped = 0
    for row in reader:
        def col(name: str) -> str:
            return (row.get(headers[name]) or "").strip()

        text = col("text")
        correct = normalize_label(col("correct"))
        if not text or correct not in OPTION_LABELS:
            skipped += 1
            continue
        out.append({
            "question_text": text,
            "option_a": col("a"),
            "option_b": col("b"),
            "option_c": col("c"),
            "option_d": col("d"),
            "correct_answer": correct,
        })
    return out, skipped


__all__ = ["parse_question_csv", "REQUIRED_HEADERS"]
