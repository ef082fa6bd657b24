import io
from urllib.parse import unquote_plus

import pytest
from flask import Flask, g

import admin
from admin import create_admin_blueprint
from exam_session import ExamSessionManager


@pytest.fixture
def sessions(clock):
    return ExamSessionManager(clock=clock)


@pytest.fixture
def identity():
    return {"user_id": 1, "user_role": "admin"}


@pytest.fixture
def client(monkeypatch, deps, sessions, identity):
    app = Flask(__name__)
    app.testing = True

    def fake_render(template_name, **context):
        return template_name

    monkeypatch.setattr(admin, "render_template", fake_render)
    app.register_blueprint(create_admin_blueprint("", dict(deps, sessions=sessions)))

    @app.before_request
    def _set_user():
        if identity.get("user_id"):
            g.user_id = identity["user_id"]
            g.user_role = identity["user_role"]

    return app.test_client()


def _sql(db, fragment):
    return [(sql, params) for sql, params in db.executed if fragment in sql]


def _location(resp):
    return unquote_plus(resp.headers["Location"])


def test_students_and_anonymous_callers_are_blocked(client, identity):
    identity["user_role"] = "student"
    assert client.get("/admin/dashboard").status_code == 403

    identity.clear()
    resp = client.get("/admin/dashboard")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")


def test_dashboard_renders(client):
    resp = client.get("/admin/dashboard")
    assert resp.get_data(as_text=True) == "admin_dashboard.html"


def test_new_exams_start_as_drafts(client, db):
    resp = client.post("/admin/exams/add", data={
        "subject_id": "1", "exam_name": "Midterm",
        "duration_minutes": "45", "total_marks": "20", "pass_marks": "10",
    })

    assert resp.status_code == 302
    (sql, params), = _sql(db, "INSERT INTO exams")
    assert "'draft'" in sql
    assert params == (1, "Midterm", 45, 20, 10)


def test_invalid_exam_numbers_are_rejected(client, db):
    resp = client.post("/admin/exams/add", data={
        "subject_id": "1", "exam_name": "Midterm",
        "duration_minutes": "0", "total_marks": "20", "pass_marks": "10",
    })
    assert "duration minutes must be at least 1" in _location(resp)

    resp = client.post("/admin/exams/add", data={
        "subject_id": "1", "exam_name": "Midterm",
        "duration_minutes": "30", "total_marks": "5", "pass_marks": "10",
    })
    assert "pass marks cannot exceed total marks" in _location(resp)
    assert _sql(db, "INSERT INTO exams") == []


def test_publish_toggle_flips_status(client, db):
    client.post("/admin/exams/7/publish")

    (sql, params), = _sql(db, "UPDATE exams SET status")
    assert params == ("draft", 7)


def test_duration_change_keeps_live_deadlines(client, db, sessions, capsys):
    sessions.begin_or_resume(11, 7, 30)
    ends_at = sessions.get(11, 7).ends_at

    resp = client.post("/admin/exams/7/update", data={
        "exam_name": "Quiz", "duration_minutes": "60", "total_marks": "10", "pass_marks": "2",
    })

    assert "Exam updated" in _location(resp)
    assert sessions.get(11, 7).ends_at == ends_at
    assert "1 live session(s)" in capsys.readouterr().out


def test_update_of_missing_exam_is_404(client):
    resp = client.post("/admin/exams/404/update", data={
        "exam_name": "Quiz", "duration_minutes": "60", "total_marks": "10", "pass_marks": "2",
    })
    assert resp.status_code == 404


def test_delete_exam(client, db):
    client.post("/admin/exams/7/delete")
    (sql, params), = _sql(db, "DELETE FROM exams")
    assert params == (7,)


def test_question_labels_are_normalised(client, db):
    client.post("/admin/exams/7/questions/add", data={
        "question_text": "Capital of France?",
        "option_a": "Paris", "option_b": "Rome", "option_c": "Oslo", "option_d": "Bern",
        "correct_answer": " a ",
    })

    (sql, params), = _sql(db, "INSERT INTO questions")
    assert params == (7, "Capital of France?", "Paris", "Rome", "Oslo", "Bern", "A")


def test_question_with_bad_label_is_rejected(client, db):
    resp = client.post("/admin/exams/7/questions/add", data={
        "question_text": "Q", "option_a": "1", "option_b": "2", "option_c": "3", "option_d": "4",
        "correct_answer": "E",
    })
    assert "correct answer must be one of" in _location(resp)
    assert _sql(db, "INSERT INTO questions") == []


def test_csv_upload_inserts_valid_rows(client, db):
    csv_bytes = b"text,a,b,c,d,correct\nQ1,1,2,3,4,A\nQ2,1,2,3,4,d\nQ3,1,2,3,4,X\n"

    resp = client.post(
        "/admin/exams/7/questions/upload",
        data={"csvFile": (io.BytesIO(csv_bytes), "questions.csv")},
        content_type="multipart/form-data",
    )

    assert "Imported 2 question(s); skipped 1" in _location(resp)
    (sql, params), = _sql(db, "INSERT INTO questions")
    assert len(params) == 14
    assert params[:7] == (7, "Q1", "1", "2", "3", "4", "A")
    assert params[-1] == "D"


def test_csv_upload_without_file_or_headers(client, db):
    resp = client.post("/admin/exams/7/questions/upload", data={}, content_type="multipart/form-data")
    assert "No file uploaded." in _location(resp)

    resp = client.post(
        "/admin/exams/7/questions/upload",
        data={"csvFile": (io.BytesIO(b"question,answer\nQ,A\n"), "bad.csv")},
        content_type="multipart/form-data",
    )
    assert "CSV is missing columns" in _location(resp)
    assert _sql(db, "INSERT INTO questions") == []


def test_delete_question_and_clear_bank(client, db):
    client.post("/admin/exams/7/questions/2/delete")
    client.post("/admin/exams/7/questions/delete-all")

    assert _sql(db, "WHERE question_id = %s AND exam_id = %s")[0][1] == (2, 7)
    assert _sql(db, "DELETE FROM questions WHERE exam_id = %s;")[0][1] == (7,)


def test_subject_filter_returns_json(client):
    assert client.get("/admin/api/subjects-filter?course_id=1").status_code == 400

    resp = client.get("/admin/api/subjects-filter?course_id=1&year=1")
    assert resp.get_json() == [{"subject_id": 1, "subject_name": "Algebra"}]


def test_subject_linked_to_exam_cannot_be_deleted(client, db):
    db.fail_on.add("DELETE FROM subjects")
    resp = client.post("/admin/subjects/1/delete")
    assert "Subject linked to exam" in _location(resp)


def test_duplicate_staff_email_is_a_conflict(client, db):
    db.users[5] = {"user_id": 5, "email": "t@example.com"}

    resp = client.post("/admin/staff/add", data={
        "first_name": "T", "last_name": "User", "email": "T@example.com",
        "password": "longenough", "role": "staff",
    })

    assert "An account with this email already exists" in _location(resp)
    assert "error=" not in resp.headers["Location"]
    assert _sql(db, "INSERT INTO users") == []


def test_add_staff_hashes_password(client, db):
    client.post("/admin/staff/add", data={
        "first_name": "New", "last_name": "Staff", "email": "new@example.com",
        "password": "longenough", "role": "admin",
    })

    (sql, params), = _sql(db, "INSERT INTO users")
    assert params[3] == "new@example.com"
    assert params[4] != "longenough"
    assert params[5] == "admin"


def test_only_super_admins_assign_super_admin(client, db):
    resp = client.post("/admin/staff/add", data={
        "first_name": "New", "last_name": "Boss", "email": "boss@example.com",
        "password": "longenough", "role": "super_admin",
    })
    assert "role not allowed" in _location(resp)


def test_staff_status_toggle_rules(client, db, identity):
    assert client.post("/admin/staff/2/toggle-status").status_code == 403

    identity["user_role"] = "super_admin"
    resp = client.post("/admin/staff/1/toggle-status")
    assert "cannot deactivate your own account" in _location(resp)
    assert _sql(db, "UPDATE users") == []

    client.post("/admin/staff/2/toggle-status")
    (sql, params), = _sql(db, "UPDATE users SET is_active = NOT is_active")
    assert params == (2,)
