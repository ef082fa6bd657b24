# scoring.py
# -----------------------------------------------------------------------------
# Turns a submission into exactly one results row.
# - Answers arrive as {"q<question_id>": "<label>"}; unknown or malformed keys
#   are ignored, missing answers score as wrong
# - One point per exact label match, no partial credit
# - PASSED when score >= pass mark
# - The insert is conditional on (user_id, exam_id); losing a race is reported
#   as AlreadyAttempted, never as a second row
# - The timer is cleared only after the row is written
# -----------------------------------------------------------------------------

import re
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from psycopg.errors import UniqueViolation

from attempt_guard import AttemptGuard
from errors import AlreadyAttempted, NotFound, PersistenceFailure
from exam_session import ExamSessionManager

PASSED = "PASSED"
FAILED = "FAILED"
OPTION_LABELS = ("A", "B", "C", "D")

_ANSWER_KEY_RE = re.compile(r"^q(\d+)$")


@dataclass(frozen=True)
class Result:
    result_id: Optional[int]
    user_id: int
    exam_id: int
    score: int
    total_questions: int
    status: str
    submitted_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.status == PASSED

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if isinstance(self.submitted_at, datetime):
            d["submitted_at"] = self.submitted_at.isoformat()
        return d


def normalize_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    label = str(value).strip().upper()
    return label or None


def parse_answers(payload: Optional[Mapping[str, Any]]) -> Dict[int, str]:
    """{"q12": "B", "csrf": "..."} -> {12: "B"}. Labels are kept as sent; anything else is dropped."""
    out: Dict[int, str] = {}
    for key, value in (payload or {}).items():
        m = _ANSWER_KEY_RE.match(str(key))
        if not m:
            continue
        if isinstance(value, (list, tuple)):
            value = value[-1] if value else None
        if value is None or value == "":
            continue
        out[int(m.group(1))] = str(value)
    return out


def grade(answer_key: Mapping[int, str], answers: Mapping[int, str]) -> int:
    """Exact label equality. Only the stored key is normalised, so " b " never scores."""
    score = 0
    for question_id, correct in answer_key.items():
        chosen = answers.get(question_id)
        if chosen is not None and chosen == normalize_label(correct):
            score += 1
    return score


def verdict(score: int, pass_mark: Any) -> str:
    return PASSED if score >= int(pass_mark or 0) else FAILED


class ScoringEngine:
    def __init__(self,
                 fetch_one: Callable[..., Any],
                 fetch_all: Callable[..., Any],
                 execute_returning: Callable[..., Any],
                 sessions: ExamSessionManager,
                 guard: Optional[AttemptGuard] = None):
        self._fetch_one = fetch_one
        self._fetch_all = fetch_all
        self._execute_returning = execute_returning
        self.sessions = sessions
        self.guard = guard or AttemptGuard(fetch_one)

    # ---------------------------------------------------------------- loading
    def load_exam(self, exam_id: int) -> Dict[str, Any]:
        try:
            row = self._fetch_one("""
                SELECT e.exam_id, e.subject_id, e.exam_name, e.duration_minutes,
                       e.total_marks, e.pass_marks, e.status, s.subject_name
                  FROM exams e
                  LEFT JOIN subjects s ON s.subject_id = e.subject_id
                 WHERE e.exam_id = %s;
            """, (int(exam_id),))
        except Exception as e:
            print(f"[scoring] exam lookup failed for {exam_id}: {e}")
            raise PersistenceFailure("exam lookup failed", exam_id=exam_id) from e
        if not row:
            raise NotFound(f"exam {exam_id} not found", exam_id=exam_id)
        return row

    def answer_key(self, exam_id: int) -> Dict[int, str]:
        try:
            rows = self._fetch_all("""
                SELECT question_id, correct_answer
                  FROM questions
                 WHERE exam_id = %s
                 ORDER BY question_id;
            """, (int(exam_id),))
        except Exception as e:
            print(f"[scoring] answer key lookup failed for {exam_id}: {e}")
            raise PersistenceFailure("answer key lookup failed", exam_id=exam_id) from e
        return {int(r["question_id"]): r.get("correct_answer") for r in (rows or [])}

    # ---------------------------------------------------------------- writing
    def _insert_result(self, user_id: int, exam_id: int, score: int,
                       total: int, status: str) -> Optional[Dict[str, Any]]:
        try:
            rows = self._execute_returning("""
                INSERT INTO results (user_id, exam_id, score, total_questions, status)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, exam_id) DO NOTHING
                RETURNING result_id, submitted_at;
            """, (user_id, exam_id, score, total, status))
        except UniqueViolation:
            return None
        except Exception as e:
            print(f"[scoring] result insert failed for user {user_id} exam {exam_id}: {e}")
            raise PersistenceFailure("result insert failed", user_id=user_id, exam_id=exam_id) from e
        return rows[0] if rows else None

    def submit(self, user_id: int, exam_id: int,
               answers: Mapping[int, str], forced: bool = False) -> Result:
        """
        Score `answers` against the stored key and commit one result.
        Raises AlreadyAttempted, NotFound or PersistenceFailure; on
        PersistenceFailure the timer is left alone so the student can retry.
        """
        user_id, exam_id = int(user_id), int(exam_id)
        self.guard.ensure_can_attempt(user_id, exam_id)

        exam = self.load_exam(exam_id)
        key = self.answer_key(exam_id)
        score = grade(key, answers or {})
        status = verdict(score, exam.get("pass_marks"))

        if self.sessions.is_expired(user_id, exam_id) and not forced:
            print(f"[scoring] late submission user {user_id} exam {exam_id}")

        row = self._insert_result(user_id, exam_id, score, len(key), status)
        if row is None:
            print(f"[scoring] duplicate submission rejected user {user_id} exam {exam_id}")
            self.sessions.clear(user_id, exam_id)
            raise AlreadyAttempted(user_id=user_id, exam_id=exam_id)

        self.sessions.clear(user_id, exam_id)
        if forced:
            print(f"[scoring] forced submission user {user_id} exam {exam_id}: {score}/{len(key)} {status}")
        return Result(
            result_id=row.get("result_id"),
            user_id=user_id,
            exam_id=exam_id,
            score=score,
            total_questions=len(key),
            status=status,
            submitted_at=row.get("submitted_at"),
        )


__all__ = [
    "PASSED", "FAILED", "OPTION_LABELS", "Result",
    "normalize_label", "parse_answers", "grade", "verdict", "ScoringEngine",
]
