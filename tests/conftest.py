import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest
from psycopg import OperationalError


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeDB:
    """
    In-memory stand-in for the psycopg helpers. Only understands the queries
    the blueprints and the core issue; results honour UNIQUE (user_id, exam_id).
    """

    def __init__(self):
        self.exams = {}
        self.subjects = {1: {"subject_id": 1, "subject_name": "Algebra", "course_id": 1, "year": 1}}
        self.questions = []
        self.results = []
        self.monitoring = []
        self.users = {}
        self.executed = []
        self.fail_on = set()
        self._results_lock = threading.Lock()
        self._next_result_id = 1

    # ---- seeding -------------------------------------------------------------
    def add_exam(self, exam_id, pass_marks=2, duration_minutes=30, status="published", name="Quiz"):
        self.exams[exam_id] = {
            "exam_id": exam_id,
            "subject_id": 1,
            "exam_name": name,
            "duration_minutes": duration_minutes,
            "total_marks": 10,
            "pass_marks": pass_marks,
            "status": status,
            "subject_name": "Algebra",
        }

    def add_question(self, exam_id, question_id, correct):
        self.questions.append({
            "question_id": question_id,
            "exam_id": exam_id,
            "question_text": f"Question {question_id}?",
            "option_a": "one",
            "option_b": "two",
            "option_c": "three",
            "option_d": "four",
            "correct_answer": correct,
        })

    # ---- helpers -------------------------------------------------------------
    def _maybe_fail(self, sql):
        for marker in self.fail_on:
            if marker in sql:
                raise OperationalError(f"simulated failure on {marker}")

    def _result_for(self, user_id, exam_id):
        for r in self.results:
            if r["user_id"] == user_id and r["exam_id"] == exam_id:
                return r
        return None

    def _exam_questions(self, exam_id, with_key):
        rows = sorted((q for q in self.questions if q["exam_id"] == exam_id), key=lambda q: q["question_id"])
        if with_key:
            return [dict(q) for q in rows]
        return [{k: v for k, v in q.items() if k not in ("correct_answer", "exam_id")} for q in rows]

    # ---- psycopg-shaped API ----------------------------------------------------
    def fetch_one(self, sql, params=()):
        self._maybe_fail(sql)
        if "FROM results" in sql and "user_id = %s AND exam_id = %s" in sql:
            row = self._result_for(params[0], params[1])
            return {"result_id": row["result_id"]} if row else None
        if "FROM users WHERE email = %s" in sql:
            return next(({"user_id": u["user_id"]} for u in self.users.values() if u["email"] == params[0]), None)
        if "COUNT(*) AS q_count" in sql:
            return {"q_count": sum(1 for q in self.questions if q["exam_id"] == params[0])}
        if "FROM exams" in sql and "exam_id = %s" in sql:
            exam = self.exams.get(params[0])
            return dict(exam) if exam else None
        return None

    def fetch_all(self, sql, params=()):
        self._maybe_fail(sql)
        if "SELECT question_id, correct_answer" in sql:
            return [{"question_id": q["question_id"], "correct_answer": q["correct_answer"]}
                    for q in self._exam_questions(params[0], with_key=True)]
        if "FROM questions" in sql:
            return self._exam_questions(params[0], with_key="correct_answer" in sql)
        if "e.status = 'published'" in sql:
            out = []
            for exam in sorted(self.exams.values(), key=lambda e: -e["exam_id"]):
                if exam["status"] != "published":
                    continue
                r = self._result_for(params[0], exam["exam_id"])
                out.append(dict(exam, result_status=r["status"] if r else None))
            return out
        if "FROM subjects" in sql and "course_id = %s AND year = %s" in sql:
            return [{"subject_id": s["subject_id"], "subject_name": s["subject_name"]}
                    for s in self.subjects.values() if (s["course_id"], s["year"]) == tuple(params)]
        if "FROM results r" in sql and "WHERE r.user_id = %s" in sql:
            rows = [dict(r, exam_name=self.exams.get(r["exam_id"], {}).get("exam_name"))
                    for r in self.results if r["user_id"] == params[0]]
            return sorted(rows, key=lambda r: r["submitted_at"], reverse=True)
        return []

    def execute(self, sql, params=()):
        self._maybe_fail(sql)
        self.executed.append((sql, params))
        if "INSERT INTO monitoring_logs" in sql:
            user_id, exam_id, event_type, details = params
            self.monitoring.append({
                "user_id": user_id, "exam_id": exam_id,
                "event_type": event_type, "event_details": details,
            })

    def execute_returning(self, sql, params=()):
        self._maybe_fail(sql)
        if "INSERT INTO results" in sql:
            user_id, exam_id, score, total, status = params
            with self._results_lock:
                if self._result_for(user_id, exam_id):
                    return []  # ON CONFLICT DO NOTHING
                row = {
                    "result_id": self._next_result_id,
                    "user_id": user_id,
                    "exam_id": exam_id,
                    "score": score,
                    "total_questions": total,
                    "status": status,
                    "submitted_at": datetime.now(timezone.utc),
                }
                self._next_result_id += 1
                self.results.append(row)
                return [{"result_id": row["result_id"], "submitted_at": row["submitted_at"]}]
        self.executed.append((sql, params))
        return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    fake = FakeDB()
    fake.add_exam(7, pass_marks=2, duration_minutes=30)
    fake.add_question(7, 1, "A")
    fake.add_question(7, 2, "B")
    fake.add_question(7, 3, "C")
    return fake


@pytest.fixture
def deps(db):
    return {
        "fetch_one": db.fetch_one,
        "fetch_all": db.fetch_all,
        "execute": db.execute,
        "execute_returning": db.execute_returning,
    }
