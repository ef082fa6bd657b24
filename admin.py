import re
from typing import Any, Dict, List, Optional, Tuple

from flask import (
    Blueprint, render_template, jsonify, abort, request,
    redirect, url_for, g
)
from werkzeug.routing import BuildError
from werkzeug.security import generate_password_hash

from errors import ValidationFailure
from exam_session import ExamSessionManager
from question_import import parse_question_csv
from scoring import OPTION_LABELS, normalize_label

# =========================
# Admin gating / constants
# =========================
ADMIN_ROLES = {"super_admin", "admin", "staff"}
STAFF_ROLES_ASSIGNABLE = {"admin", "staff"}
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_admin_role(role: Optional[str]) -> bool:
    return (role or "").strip().lower() in ADMIN_ROLES


# =========================
# Form helpers
# =========================
def _text_field(name: str, required: bool = True, limit: int = 255) -> str:
    value = (request.form.get(name) or "").strip()[:limit]
    if required and not value:
        raise ValidationFailure(f"{name.replace('_', ' ')} is required")
    return value


def _int_field(name: str, minimum: Optional[int] = None, required: bool = True) -> Optional[int]:
    raw = (request.form.get(name) or "").strip()
    if not raw:
        if required:
            raise ValidationFailure(f"{name.replace('_', ' ')} is required")
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailure(f"{name.replace('_', ' ')} must be a whole number") from None
    if minimum is not None and value < minimum:
        raise ValidationFailure(f"{name.replace('_', ' ')} must be at least {minimum}")
    return value


def _question_fields() -> Tuple[str, str, str, str, str, str]:
    text = _text_field("question_text", limit=4000)
    opts = [_text_field(f"option_{c}", limit=1000) for c in "abcd"]
    correct = normalize_label(request.form.get("correct_answer"))
    if correct not in OPTION_LABELS:
        raise ValidationFailure("correct answer must be one of A, B, C, D")
    return text, opts[0], opts[1], opts[2], opts[3], correct


# =========================
# Blueprint factory
# =========================
def create_admin_blueprint(
    url_prefix: str,
    deps: Dict[str, Any],
    name: str = "admin",
) -> Blueprint:
    """
    Record management for courses, subjects, exams, questions, staff,
    results and proctoring logs.
    deps:
      - fetch_one(sql, params)
      - fetch_all(sql, params)
      - execute(sql, params)
      - sessions: ExamSessionManager shared with the student blueprint (optional)
    """
    fetch_one = deps["fetch_one"]
    fetch_all = deps["fetch_all"]
    execute = deps["execute"]
    sessions: Optional[ExamSessionManager] = deps.get("sessions")

    # Mount at /<BASE_PATH>/admin (e.g. /portal/admin) or /admin if url_prefix=""
    mount_prefix = (url_prefix.rstrip("/") + "/admin") if url_prefix else "/admin"
    base_prefix = url_prefix.rstrip("/") if url_prefix else ""
    bp = Blueprint(name, __name__, url_prefix=mount_prefix)

    def _to(endpoint: str, **values) -> Any:
        return redirect(url_for(f"{bp.name}.{endpoint}", **values))

    # ---------- Gate ----------
    @bp.before_request
    def require_admin():
        if not getattr(g, "user_id", None):
            try:
                return redirect(url_for("login"))
            except BuildError:
                return redirect(f"{base_prefix}/login")
        if not is_admin_role(getattr(g, "user_role", None)):
            abort(403)

    # ---------- Dashboard ----------
    @bp.get("/dashboard")
    def admin_dashboard():
        counts = fetch_one("""
            SELECT (SELECT COUNT(*) FROM exams)                          AS exams,
                   (SELECT COUNT(*) FROM subjects)                       AS subjects,
                   (SELECT COUNT(*) FROM users WHERE role = 'student')   AS students;
        """, ()) or {}
        recent = fetch_all("""
            SELECT subject_name FROM subjects ORDER BY subject_id DESC LIMIT 5;
        """, ())
        stats = {k: int(counts.get(k) or 0) for k in ("exams", "subjects", "students")}
        return render_template("admin_dashboard.html", stats=stats, activities=recent or [])

    # ---------- Courses ----------
    @bp.get("/courses")
    def admin_courses():
        courses = fetch_all("SELECT course_id, course_name FROM courses ORDER BY course_name ASC;", ())
        return render_template(
            "admin_courses.html",
            courses=courses or [],
            msg=request.args.get("msg"),
            err=request.args.get("err"),
        )

    @bp.post("/courses/add")
    def admin_add_course():
        try:
            course_name = _text_field("course_name")
            execute("INSERT INTO courses (course_name) VALUES (%s);", (course_name,))
            return _to("admin_courses", msg="Course added")
        except ValidationFailure as e:
            return _to("admin_courses", err=str(e))
        except Exception as e:
            print(f"[admin] add course failed: {e}")
            return _to("admin_courses", err="Error adding course. Ensure the name is unique.")

    @bp.post("/courses/<int:course_id>/delete")
    def admin_delete_course(course_id: int):
        try:
            execute("DELETE FROM courses WHERE course_id = %s;", (course_id,))
            return _to("admin_courses", msg="Course deleted")
        except Exception as e:
            print(f"[admin] delete course {course_id} failed: {e}")
            return _to("admin_courses", err="Cannot delete course. It might have subjects linked to it.")

    # ---------- Subjects ----------
    @bp.get("/subjects")
    def admin_subjects():
        selected_course = (request.args.get("course") or "").strip()
        courses = fetch_all("SELECT course_id, course_name FROM courses ORDER BY course_name ASC;", ())
        sql = """
            SELECT s.subject_id, s.subject_name, s.subject_code, s.course_id, s.year, c.course_name
              FROM subjects s
              JOIN courses c ON s.course_id = c.course_id
        """
        params: Tuple[Any, ...] = ()
        if selected_course.isdigit():
            sql += " WHERE s.course_id = %s"
            params = (int(selected_course),)
        sql += " ORDER BY s.subject_id DESC;"
        subjects = fetch_all(sql, params)
        return render_template(
            "admin_subjects.html",
            courses=courses or [],
            subjects=subjects or [],
            selected_course=selected_course,
            msg=request.args.get("msg"),
            err=request.args.get("err"),
        )

    @bp.post("/subjects/add")
    def admin_add_subject():
        try:
            execute("""
                INSERT INTO subjects (subject_name, subject_code, course_id, year, created_by)
                VALUES (%s, %s, %s, %s, %s);
            """, (
                _text_field("subject_name"),
                _text_field("subject_code", required=False, limit=32) or None,
                _int_field("course_id", minimum=1),
                _int_field("year", minimum=1, required=False),
                g.user_id,
            ))
            return _to("admin_subjects", msg="Subject added")
        except ValidationFailure as e:
            return _to("admin_subjects", err=str(e))
        except Exception as e:
            print(f"[admin] add subject failed: {e}")
            return _to("admin_subjects", err="Error adding subject")

    @bp.post("/subjects/<int:subject_id>/update")
    def admin_update_subject(subject_id: int):
        try:
            execute("""
                UPDATE subjects
                   SET subject_name = %s, subject_code = %s, course_id = %s
                 WHERE subject_id = %s;
            """, (
                _text_field("subject_name"),
                _text_field("subject_code", required=False, limit=32) or None,
                _int_field("course_id", minimum=1),
                subject_id,
            ))
            return _to("admin_subjects", msg="Subject updated")
        except ValidationFailure as e:
            return _to("admin_subjects", err=str(e))
        except Exception as e:
            print(f"[admin] update subject {subject_id} failed: {e}")
            return _to("admin_subjects", err="Error updating subject")

    @bp.post("/subjects/<int:subject_id>/delete")
    def admin_delete_subject(subject_id: int):
        try:
            execute("DELETE FROM subjects WHERE subject_id = %s;", (subject_id,))
            return _to("admin_subjects", msg="Subject deleted")
        except Exception as e:
            print(f"[admin] delete subject {subject_id} failed: {e}")
            return _to("admin_subjects", err="Subject linked to exam")

    # Chained selects: course + year -> subjects
    @bp.get("/api/subjects-filter")
    def admin_subjects_filter():
        course_id = request.args.get("course_id", type=int)
        year = request.args.get("year", type=int)
        if course_id is None or year is None:
            return jsonify({"error": "course_id and year are required"}), 400
        try:
            rows = fetch_all("""
                SELECT subject_id, subject_name
                  FROM subjects
                 WHERE course_id = %s AND year = %s
                 ORDER BY subject_name;
            """, (course_id, year))
        except Exception as e:
            print(f"[admin] subjects filter failed: {e}")
            return jsonify({"error": "Failed to fetch subjects"}), 500
        return jsonify(rows or [])

    # ---------- Exams ----------
    @bp.get("/exams")
    def admin_exams():
        courses = fetch_all("SELECT course_id, course_name FROM courses ORDER BY course_name ASC;", ())
        exams = fetch_all("""
            SELECT e.exam_id, e.exam_name, e.duration_minutes, e.total_marks, e.pass_marks, e.status,
                   e.subject_id, s.subject_name, s.year, c.course_name
              FROM exams e
              JOIN subjects s ON e.subject_id = s.subject_id
              JOIN courses c ON s.course_id = c.course_id
             ORDER BY e.exam_id DESC;
        """, ())
        return render_template(
            "admin_exams.html",
            courses=courses or [],
            exams=exams or [],
            msg=request.args.get("msg"),
            err=request.args.get("err"),
        )

    def _exam_numbers() -> Tuple[int, int, int]:
        duration = _int_field("duration_minutes", minimum=1)
        total = _int_field("total_marks", minimum=0)
        pass_marks = _int_field("pass_marks", minimum=0)
        if pass_marks > total:
            raise ValidationFailure("pass marks cannot exceed total marks")
        return duration, total, pass_marks

    @bp.post("/exams/add")
    def admin_add_exam():
        try:
            subject_id = _int_field("subject_id", minimum=1)
            exam_name = _text_field("exam_name")
            duration, total, pass_marks = _exam_numbers()
            execute("""
                INSERT INTO exams (subject_id, exam_name, duration_minutes, total_marks, pass_marks, status)
                VALUES (%s, %s, %s, %s, %s, 'draft');
            """, (subject_id, exam_name, duration, total, pass_marks))
            return _to("admin_exams", msg="Exam created as draft")
        except ValidationFailure as e:
            return _to("admin_exams", err=str(e))
        except Exception as e:
            print(f"[admin] add exam failed: {e}")
            return _to("admin_exams", err="Error creating exam")

    @bp.post("/exams/<int:exam_id>/update")
    def admin_update_exam(exam_id: int):
        before = fetch_one("SELECT duration_minutes FROM exams WHERE exam_id = %s;", (exam_id,))
        if not before:
            abort(404)
        try:
            exam_name = _text_field("exam_name")
            duration, total, pass_marks = _exam_numbers()
            execute("""
                UPDATE exams
                   SET exam_name = %s, duration_minutes = %s, total_marks = %s, pass_marks = %s
                 WHERE exam_id = %s;
            """, (exam_name, duration, total, pass_marks, exam_id))
        except ValidationFailure as e:
            return _to("admin_exams", err=str(e))
        except Exception as e:
            print(f"[admin] update exam {exam_id} failed: {e}")
            return _to("admin_exams", err="Update failed")

        # Live timers keep the deadline they were created with
        if sessions is not None and int(before.get("duration_minutes") or 0) != duration:
            live = sessions.live_count(exam_id)
            if live:
                print(f"[admin] exam {exam_id} duration changed to {duration}m; {live} live session(s) keep their deadline")
        return _to("admin_exams", msg="Exam updated")

    @bp.post("/exams/<int:exam_id>/publish")
    def admin_toggle_exam_status(exam_id: int):
        try:
            row = fetch_one("SELECT status FROM exams WHERE exam_id = %s;", (exam_id,))
            if not row:
                return _to("admin_exams", err="Exam not found")
            new_status = "draft" if row.get("status") == "published" else "published"
            execute("UPDATE exams SET status = %s WHERE exam_id = %s;", (new_status, exam_id))
            return _to("admin_exams", msg=f"Exam is now {new_status}")
        except Exception as e:
            print(f"[admin] status toggle for exam {exam_id} failed: {e}")
            return _to("admin_exams", err="Status change failed")

    @bp.post("/exams/<int:exam_id>/delete")
    def admin_delete_exam(exam_id: int):
        # questions, results and monitoring_logs cascade
        try:
            execute("DELETE FROM exams WHERE exam_id = %s;", (exam_id,))
            return _to("admin_exams", msg="Exam deleted")
        except Exception as e:
            print(f"[admin] delete exam {exam_id} failed: {e}")
            return _to("admin_exams", err="Database error while deleting exam")

    # ---------- Questions ----------
    def _exam_or_404(exam_id: int) -> Dict[str, Any]:
        exam = fetch_one("""
            SELECT exam_id, exam_name, duration_minutes, total_marks, pass_marks, status
              FROM exams WHERE exam_id = %s;
        """, (exam_id,))
        if not exam:
            abort(404)
        return exam

    @bp.get("/exams/<int:exam_id>/questions")
    def admin_questions(exam_id: int):
        exam = _exam_or_404(exam_id)
        questions = fetch_all("""
            SELECT question_id, question_text, option_a, option_b, option_c, option_d, correct_answer
              FROM questions
             WHERE exam_id = %s
             ORDER BY question_id;
        """, (exam_id,))
        return render_template(
            "admin_questions.html",
            exam=exam,
            questions=questions or [],
            msg=request.args.get("msg"),
            err=request.args.get("err"),
        )

    @bp.post("/exams/<int:exam_id>/questions/add")
    def admin_add_question(exam_id: int):
        try:
            fields = _question_fields()
            execute("""
                INSERT INTO questions (exam_id, question_text, option_a, option_b, option_c, option_d, correct_answer)
                VALUES (%s, %s, %s, %s, %s, %s, %s);
            """, (exam_id, *fields))
            return _to("admin_questions", exam_id=exam_id, msg="Question added")
        except ValidationFailure as e:
            return _to("admin_questions", exam_id=exam_id, err=str(e))
        except Exception as e:
            print(f"[admin] add question to exam {exam_id} failed: {e}")
            return _to("admin_questions", exam_id=exam_id, err="Error saving question")

    @bp.post("/exams/<int:exam_id>/questions/upload")
    def admin_upload_questions(exam_id: int):
        upload = request.files.get("csvFile")
        if upload is None or not upload.filename:
            return _to("admin_questions", exam_id=exam_id, err="No file uploaded.")
        try:
            questions, skipped = parse_question_csv(upload.read())
        except ValueError as e:
            return _to("admin_questions", exam_id=exam_id, err=str(e))
        if not questions:
            return _to("admin_questions", exam_id=exam_id, err=f"No valid questions found ({skipped} skipped)")

        columns = ("question_text", "option_a", "option_b", "option_c", "option_d", "correct_answer")
        values_sql = ", ".join(["(%s, %s, %s, %s, %s, %s, %s)"] * len(questions))
        params: List[Any] = []
        for q in questions:
            params.append(exam_id)
            params.extend(q[c] for c in columns)
        try:
            execute(f"""
                INSERT INTO questions (exam_id, {", ".join(columns)})
                VALUES {values_sql};
            """, tuple(params))
        except Exception as e:
            print(f"[admin] bulk upload for exam {exam_id} failed: {e}")
            return _to("admin_questions", exam_id=exam_id, err="Error saving bulk questions")
        msg = f"Imported {len(questions)} question(s)"
        if skipped:
            msg += f"; skipped {skipped}"
        return _to("admin_questions", exam_id=exam_id, msg=msg)

    @bp.post("/exams/<int:exam_id>/questions/<int:question_id>/update")
    def admin_update_question(exam_id: int, question_id: int):
        try:
            fields = _question_fields()
            execute("""
                UPDATE questions
                   SET question_text = %s, option_a = %s, option_b = %s, option_c = %s,
                       option_d = %s, correct_answer = %s
                 WHERE question_id = %s AND exam_id = %s;
            """, (*fields, question_id, exam_id))
            return _to("admin_questions", exam_id=exam_id, msg="Question updated")
        except ValidationFailure as e:
            return _to("admin_questions", exam_id=exam_id, err=str(e))
        except Exception as e:
            print(f"[admin] update question {question_id} failed: {e}")
            return _to("admin_questions", exam_id=exam_id, err="Error updating question")

    @bp.post("/exams/<int:exam_id>/questions/<int:question_id>/delete")
    def admin_delete_question(exam_id: int, question_id: int):
        try:
            execute("DELETE FROM questions WHERE question_id = %s AND exam_id = %s;", (question_id, exam_id))
            return _to("admin_questions", exam_id=exam_id, msg="Question deleted")
        except Exception as e:
            print(f"[admin] delete question {question_id} failed: {e}")
            return _to("admin_questions", exam_id=exam_id, err="Error deleting question")

    @bp.post("/exams/<int:exam_id>/questions/delete-all")
    def admin_delete_all_questions(exam_id: int):
        try:
            execute("DELETE FROM questions WHERE exam_id = %s;", (exam_id,))
            return _to("admin_questions", exam_id=exam_id, msg="Question bank cleared")
        except Exception as e:
            print(f"[admin] clearing questions of exam {exam_id} failed: {e}")
            return _to("admin_questions", exam_id=exam_id, err="Error clearing question bank")

    # ---------- Proctoring logs ----------
    @bp.get("/exams/<int:exam_id>/monitoring")
    def admin_monitoring(exam_id: int):
        exam = _exam_or_404(exam_id)
        events = fetch_all("""
            SELECT m.log_id, m.event_type, m.event_details, m.logged_at,
                   u.first_name, u.last_name, u.roll_no
              FROM monitoring_logs m
              JOIN users u ON u.user_id = m.user_id
             WHERE m.exam_id = %s
             ORDER BY m.logged_at DESC
             LIMIT 1000;
        """, (exam_id,))
        return render_template("admin_monitoring.html", exam=exam, events=events or [])

    # ---------- Staff ----------
    @bp.get("/staff")
    def admin_staff():
        admins = fetch_all("""
            SELECT user_id, username, email, role, is_active
              FROM users
             WHERE role IN ('super_admin', 'admin', 'staff')
             ORDER BY user_id;
        """, ())
        return render_template(
            "admin_staff.html",
            admins=admins or [],
            can_manage=(g.user_role == "super_admin"),
            msg=request.args.get("msg"),
            err=request.args.get("err"),
        )

    @bp.post("/staff/add")
    def admin_add_staff():
        try:
            first_name = _text_field("first_name", limit=80)
            last_name = _text_field("last_name", limit=80)
            email = _text_field("email").lower()
            password = request.form.get("password") or ""
            if not EMAIL_RE.match(email):
                raise ValidationFailure("a valid email is required")
            if len(password) < 8:
                raise ValidationFailure("password must be at least 8 characters")
            role = (request.form.get("role") or "staff").strip().lower()
            assignable = STAFF_ROLES_ASSIGNABLE | ({"super_admin"} if g.user_role == "super_admin" else set())
            if role not in assignable:
                raise ValidationFailure("role not allowed")
        except ValidationFailure as e:
            return _to("admin_staff", err=str(e))

        try:
            existing = fetch_one("SELECT user_id FROM users WHERE email = %s;", (email,))
            if existing:
                return _to("admin_staff", err="An account with this email already exists")
            execute("""
                INSERT INTO users (username, first_name, last_name, email, password_hash, role, is_active)
                VALUES (%s, %s, %s, %s, %s, %s, TRUE);
            """, (f"{first_name} {last_name}", first_name, last_name, email,
                  generate_password_hash(password), role))
            return _to("admin_staff", msg="Staff member added")
        except Exception as e:
            print(f"[admin] add staff failed: {e}")
            return _to("admin_staff", err="Could not add staff member")

    @bp.post("/staff/<int:staff_id>/toggle-status")
    def admin_toggle_staff(staff_id: int):
        if g.user_role != "super_admin":
            return ("Unauthorized: Only Super Admins can manage staff status.", 403)
        if int(staff_id) == int(g.user_id):
            return _to("admin_staff", err="You cannot deactivate your own account")
        try:
            execute("""
                UPDATE users SET is_active = NOT is_active
                 WHERE user_id = %s AND role IN ('super_admin', 'admin', 'staff');
            """, (staff_id,))
            return _to("admin_staff", msg="Status updated")
        except Exception as e:
            print(f"[admin] toggle staff {staff_id} failed: {e}")
            return ("Internal Server Error", 500)

    # ---------- Results ----------
    @bp.get("/results")
    def admin_results():
        results = fetch_all("""
            SELECT r.result_id, r.user_id, r.exam_id, r.score, r.total_questions, r.status, r.submitted_at,
                   u.first_name, u.last_name, u.roll_no, u.class_name, e.exam_name
              FROM results r
              JOIN users u ON r.user_id = u.user_id
              JOIN exams e ON r.exam_id = e.exam_id
             ORDER BY r.submitted_at DESC;
        """, ())
        return render_template("admin_results.html", results=results or [])

    return bp


__all__ = ["create_admin_blueprint", "is_admin_role", "ADMIN_ROLES"]
