# exam.py
# -----------------------------------------------------------------------------
# Student exam blueprint: start page, timed attempt, submit, quit, history.
# - One attempt per exam: every entry point that shows exam content (and the
#   submit endpoint) checks the results table first
# - Timer lives on the server (ExamSessionManager); reloads resume it
# - An attempt page (or start page) that finds the timer expired submits the
#   attempt on the student's behalf with no answers
# - Draft exams are invisible to students
# - Pages render templates; JSON callers (Accept: application/json) get JSON
# -----------------------------------------------------------------------------

from typing import Any, Dict, Optional, List, Callable

from flask import (
    Blueprint, request, jsonify, render_template, redirect, url_for, g, abort
)
from werkzeug.routing import BuildError

from attempt_guard import AttemptGuard
from errors import AlreadyAttempted, NotFound, PersistenceFailure, Unauthenticated
from exam_session import ExamSessionManager
from scoring import ScoringEngine, Result, parse_answers

STUDENT_ROLE = "student"


# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_exam_blueprint(base_path: str, deps: Dict[str, Any], name: str = "exam") -> Blueprint:
    """
    Factory that returns the student Blueprint mounted at <base_path>/student.
    Required deps: fetch_one, fetch_all, execute_returning
    Optional deps: sessions (shared ExamSessionManager; one is created if absent)
    """
    base = (base_path or "").rstrip("/")
    bp = Blueprint(name, __name__, url_prefix=f"{base}/student")

    # ---- Required deps -------------------------------------------------------
    fetch_one: Callable = deps["fetch_one"]
    fetch_all: Callable = deps["fetch_all"]
    execute_returning: Callable = deps["execute_returning"]
    sessions: ExamSessionManager = deps.get("sessions") or ExamSessionManager()

    guard = AttemptGuard(fetch_one)
    engine = ScoringEngine(fetch_one, fetch_all, execute_returning, sessions, guard)

    # ------------------------------- helpers ----------------------------------
    def _wants_json() -> bool:
        if request.is_json:
            return True
        best = request.accept_mimetypes.best
        return best == "application/json"

    def _url(endpoint: str, fallback: str, **values) -> str:
        try:
            return url_for(endpoint, **values)
        except BuildError:
            return f"{base}{fallback}"

    def _history_url() -> str:
        return url_for(f"{bp.name}.history")

    def _query_all(sql: str, params: tuple) -> List[dict]:
        try:
            return fetch_all(sql, params) or []
        except Exception as e:
            print(f"[exam] query failed: {e}")
            raise PersistenceFailure("query failed") from e

    def _query_one(sql: str, params: tuple) -> Optional[dict]:
        try:
            return fetch_one(sql, params)
        except Exception as e:
            print(f"[exam] query failed: {e}")
            raise PersistenceFailure("query failed") from e

    def _published_exam(exam_id: int) -> Dict[str, Any]:
        exam = engine.load_exam(exam_id)
        if (exam.get("status") or "draft") != "published":
            raise NotFound(f"exam {exam_id} is not published", exam_id=exam_id)
        return exam

    def _render_result(exam: Dict[str, Any], result: Result, forced: bool = False):
        if _wants_json():
            return jsonify({
                "ok": True,
                "score": result.score,
                "total": result.total_questions,
                "status": result.status,
                "forced": forced,
            })
        return render_template(
            "student_result.html",
            exam=exam,
            score=result.score,
            total=result.total_questions,
            status=result.status,
            forced=forced,
            history_url=_history_url(),
        )

    def _force_submit_if_expired(exam_id: int) -> Optional[Result]:
        if not sessions.is_expired(g.user_id, exam_id):
            return None
        return engine.submit(g.user_id, exam_id, {}, forced=True)

    # ----------------------------- access gate --------------------------------
    @bp.before_request
    def _require_student():
        if not getattr(g, "user_id", None):
            raise Unauthenticated()
        if (getattr(g, "user_role", None) or "") != STUDENT_ROLE:
            abort(403)

    # ---------------------------- error mapping -------------------------------
    @bp.errorhandler(Unauthenticated)
    def _unauthenticated(e):
        if _wants_json():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        return redirect(_url("login", "/login"))

    @bp.errorhandler(AlreadyAttempted)
    def _already_attempted(e):
        if _wants_json():
            return jsonify({"ok": False, "error": e.public_message}), 409
        return redirect(_history_url())

    @bp.errorhandler(NotFound)
    @bp.errorhandler(PersistenceFailure)
    def _exam_error(e):
        if _wants_json():
            return jsonify({"ok": False, "error": e.public_message}), e.status_code
        return render_template("student_error.html", message=e.public_message,
                               dashboard_url=url_for(f"{bp.name}.dashboard")), e.status_code

    # --------------------------------- routes ---------------------------------
    @bp.get("/dashboard")
    def dashboard():
        exams = _query_all("""
            SELECT e.exam_id, e.exam_name, e.duration_minutes, e.total_marks, e.pass_marks,
                   s.subject_name, r.status AS result_status
              FROM exams e
              JOIN subjects s ON s.subject_id = e.subject_id
              LEFT JOIN results r ON r.exam_id = e.exam_id AND r.user_id = %s
             WHERE e.status = 'published'
             ORDER BY e.exam_id DESC;
        """, (g.user_id,))
        active = sessions.active(g.user_id)
        active_exam_id = active.exam_id if active else None
        if _wants_json():
            return jsonify({"ok": True, "exams": exams, "active_exam_id": active_exam_id})
        return render_template("student_dashboard.html", exams=exams, active_exam_id=active_exam_id)

    @bp.get("/exam/<int:exam_id>/start")
    def exam_start(exam_id: int):
        if not guard.can_attempt(g.user_id, exam_id):
            return redirect(_history_url())
        exam = _published_exam(exam_id)

        forced = _force_submit_if_expired(exam_id)
        if forced:
            return _render_result(exam, forced, forced=True)

        row = _query_one("SELECT COUNT(*) AS q_count FROM questions WHERE exam_id = %s;", (exam_id,))
        q_count = int((row or {}).get("q_count") or 0)
        resuming = sessions.get(g.user_id, exam_id) is not None
        if _wants_json():
            return jsonify({
                "ok": True,
                "exam_id": exam_id,
                "exam_name": exam.get("exam_name"),
                "duration_minutes": exam.get("duration_minutes"),
                "q_count": q_count,
                "resuming": resuming,
            })
        return render_template(
            "student_exam_start.html",
            exam=exam,
            q_count=q_count,
            resuming=resuming,
            attempt_url=url_for(f"{bp.name}.exam_attempt", exam_id=exam_id),
        )

    @bp.get("/exam/<int:exam_id>/attempt")
    def exam_attempt(exam_id: int):
        if not guard.can_attempt(g.user_id, exam_id):
            return redirect(_history_url())
        exam = _published_exam(exam_id)

        remaining = sessions.begin_or_resume(g.user_id, exam_id, exam.get("duration_minutes"))
        if sessions.is_expired(g.user_id, exam_id):
            result = engine.submit(g.user_id, exam_id, {}, forced=True)
            return _render_result(exam, result, forced=True)

        # Answer key never leaves the server
        questions = _query_all("""
            SELECT question_id, question_text, option_a, option_b, option_c, option_d
              FROM questions
             WHERE exam_id = %s
             ORDER BY question_id;
        """, (exam_id,))
        if _wants_json():
            return jsonify({
                "ok": True,
                "exam_id": exam_id,
                "exam_name": exam.get("exam_name"),
                "questions": questions,
                "remainingSeconds": remaining,
            })
        return render_template(
            "student_exam_attempt.html",
            exam=exam,
            questions=questions,
            remaining_seconds=remaining,
            submit_url=url_for(f"{bp.name}.exam_submit", exam_id=exam_id),
            quit_url=url_for(f"{bp.name}.exam_quit"),
            monitor_url=_url("monitor.monitor_log", "/api/monitor/log"),
        )

    @bp.post("/exam/<int:exam_id>/submit")
    def exam_submit(exam_id: int):
        if request.is_json:
            payload = request.get_json(silent=True) or {}
            if isinstance(payload.get("answers"), dict):
                payload = payload["answers"]
        else:
            payload = request.form.to_dict()
        answers = parse_answers(payload)

        exam = _published_exam(exam_id)
        result = engine.submit(g.user_id, exam_id, answers)
        return _render_result(exam, result)

    @bp.get("/exam/quit")
    def exam_quit():
        sessions.clear_user(g.user_id)
        if _wants_json():
            return jsonify({"ok": True})
        return redirect(url_for(f"{bp.name}.dashboard"))

    @bp.get("/history")
    def history():
        results = _query_all("""
            SELECT r.result_id, r.exam_id, r.score, r.total_questions, r.status,
                   r.submitted_at, e.exam_name
              FROM results r
              JOIN exams e ON r.exam_id = e.exam_id
             WHERE r.user_id = %s
             ORDER BY r.submitted_at DESC;
        """, (g.user_id,))
        if _wants_json():
            return jsonify({"ok": True, "results": results})
        return render_template("student_history.html", results=results)

    return bp


__all__ = ["create_exam_blueprint", "STUDENT_ROLE"]
