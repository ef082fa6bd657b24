# main.py — exam portal entry point, BASE_PATH-aware (psycopg3 + pooling)
# Wires identity, the store helpers and the student / admin / monitor blueprints.

import os
import re
from contextlib import contextmanager
from functools import lru_cache
from urllib.parse import urlparse, parse_qs, unquote, quote, urlsplit, urlunsplit
from typing import Any, Dict, Optional

import click
from flask import (
    Flask, render_template, abort, request, redirect, url_for, g, session, jsonify,
)
from markupsafe import Markup, escape
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash

# Rendering
import bleach
import markdown

# Database (psycopg 3)
from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

# OAuth (Google via Authlib)
from authlib.integrations.flask_client import OAuth

# Blueprints / core
from admin import create_admin_blueprint, is_admin_role, EMAIL_RE
from exam import create_exam_blueprint, STUDENT_ROLE
from exam_session import ExamSessionManager
from monitor import create_monitor_blueprint

# =============================================================================
# BASE_PATH & Flask app
# =============================================================================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")
STATIC_URL_PATH = (BASE_PATH + "/static") if BASE_PATH else "/static"

app = Flask(
    __name__,
    static_folder="static",
    static_url_path=STATIC_URL_PATH,
    template_folder="templates",
)
app.url_map.strict_slashes = False
app.secret_key = os.getenv("SECRET_KEY", "dev-secret")
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=os.getenv("SESSION_COOKIE_SECURE", "1").lower() in {"1", "true", "yes"},
)

# =============================================================================
# OAuth (Google) — optional; only maps onto existing active accounts
# =============================================================================
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
OAUTH_REDIRECT_BASE = (os.getenv("OAUTH_REDIRECT_BASE", "") or "").rstrip("/")

oauth: Optional[OAuth] = None
if GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET:
    oauth = OAuth(app)
    oauth.register(
        "google",
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    print("[Auth] Google sign-in enabled alongside password login.", flush=True)

def _require_oauth() -> OAuth:
    if oauth is None:
        abort(503, description="Google OAuth is not configured.")
    return oauth

def _bp(path: str = "") -> str:
    """Prefix a path with BASE_PATH (if set)."""
    p = path or "/"
    if not p.startswith("/"):
        p = "/" + p
    if BASE_PATH and (p == BASE_PATH or p.startswith(BASE_PATH + "/")):
        return p
    return (BASE_PATH + p) if BASE_PATH else p

def _oauth_callback_url() -> str:
    base = OAUTH_REDIRECT_BASE or (request.url_root.rstrip("/") + (BASE_PATH or ""))
    if base.endswith("/auth/google/callback"):
        return base
    return base.rstrip("/") + "/auth/google/callback"

# =============================================================================
# DB configuration
# =============================================================================
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_URL_LOCAL = os.getenv("DATABASE_URL_LOCAL")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT")
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")  # support either name

DB_POOL_MIN = int(os.getenv("DB_POOL_MIN") or 1)
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX") or 6)
DB_POOL_TIMEOUT = float(os.getenv("DB_POOL_TIMEOUT") or 10)
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS") or 5000)

ALLOW_RAW_HTML = os.getenv("ALLOW_RAW_HTML", "1").lower() in {"1", "true", "yes"}
SANITIZE_HTML = os.getenv("SANITIZE_HTML", "1").lower() in {"1", "true", "yes"}

BLEACH_ALLOWED_TAGS = {
    "a", "abbr", "b", "blockquote", "code", "em", "i", "li", "ol", "strong", "ul",
    "p", "pre", "br", "span", "sub", "sup", "img", "table", "thead", "tbody", "tr", "th", "td",
}
BLEACH_ALLOWED_ATTRS = {
    "*": ["class", "title"],
    "a": ["href", "target", "rel"],
    "img": ["src", "alt", "width", "height"],
}
BLEACH_ALLOWED_PROTOCOLS = {"http", "https", "mailto", "data"}

def _session_options() -> str:
    return f"-c search_path=public -c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"

def _log_choice(kwargs: dict, origin: str):
    host = kwargs.get("host", "localhost")
    port = kwargs.get("port", 5432)
    print(f"[DB] {origin}: TCP -> {host}:{port} (pool {DB_POOL_MIN}-{DB_POOL_MAX})")

def _parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # Normalize SA-style scheme to plain postgres for psycopg usage
    for pref in ("postgresql+psycopg://", "postgres+psycopg://",
                 "postgresql+psycopg2://", "postgres+psycopg2://"):
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = qs["host"][0] if qs.get("host") else p.hostname
    dbname = (p.path or "").lstrip("/") or (qs["dbname"][0] if qs.get("dbname") else "")
    if not dbname:
        raise ValueError("DATABASE_URL missing dbname")
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
        "options": _session_options(),
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if qs.get("sslmode"):
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs

def _tcp_kwargs() -> dict:
    if not all([DB_NAME, DB_USER, DB_PASS]):
        raise RuntimeError("DB_NAME, DB_USER, DB_PASS must be set when no DATABASE_URL is given.")
    return {
        "host": DB_HOST or "127.0.0.1",
        "port": int(DB_PORT or "5432"),
        "dbname": DB_NAME,
        "user": DB_USER,
        "password": DB_PASS,
        "sslmode": "disable",
        "connect_timeout": 10,
        "options": _session_options(),
    }

def _connection_kwargs() -> dict:
    for origin, url in (("DATABASE_URL_LOCAL", DATABASE_URL_LOCAL), ("DATABASE_URL", DATABASE_URL)):
        if not url:
            continue
        try:
            kwargs = _parse_database_url(url)
            _log_choice(kwargs, f"Using {origin} (parsed)")
            return kwargs
        except ValueError as e:
            print(f"[DB] Ignoring {origin}: {e}")
    kwargs = _tcp_kwargs(); _log_choice(kwargs, "DB_* variables"); return kwargs

# =============================================================================
# psycopg3 Connection Pool + helpers
# =============================================================================
_pg_pool: Optional[ConnectionPool] = None

def _to_conninfo(kwargs: dict) -> str:
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if any(ch.isspace() for ch in s) or "'" in s or '"' in s:
            s = "'" + s.replace("'", r"\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)

def init_pool():
    global _pg_pool
    if _pg_pool is not None:
        return
    conninfo = _to_conninfo(_connection_kwargs())
    _pg_pool = ConnectionPool(
        conninfo=conninfo,
        min_size=DB_POOL_MIN,
        max_size=DB_POOL_MAX,
        timeout=DB_POOL_TIMEOUT,
        open=True,
    )

@contextmanager
def get_conn():
    if _pg_pool is None:
        init_pool()
    with _pg_pool.connection() as conn:
        yield conn

def fetch_all(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            return cur.fetchall()

def fetch_one(q, params=None):
    rows = fetch_all(q, params)
    return rows[0] if rows else None

def execute(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
        conn.commit()

def execute_returning(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            rows = cur.fetchall()
        conn.commit()
        return rows

# =============================================================================
# Schema
# =============================================================================
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id       SERIAL PRIMARY KEY,
    username      TEXT,
    first_name    TEXT NOT NULL DEFAULT '',
    last_name     TEXT NOT NULL DEFAULT '',
    email         TEXT NOT NULL UNIQUE,
    password_hash TEXT,
    role          TEXT NOT NULL DEFAULT 'student'
                  CHECK (role IN ('super_admin', 'admin', 'staff', 'student')),
    roll_no       TEXT,
    class_name    TEXT,
    is_active     BOOLEAN NOT NULL DEFAULT TRUE,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS courses (
    course_id   SERIAL PRIMARY KEY,
    course_name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS subjects (
    subject_id   SERIAL PRIMARY KEY,
    subject_name TEXT NOT NULL,
    subject_code TEXT,
    course_id    INT NOT NULL REFERENCES courses (course_id) ON DELETE RESTRICT,
    year         INT,
    created_by   INT REFERENCES users (user_id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS exams (
    exam_id          SERIAL PRIMARY KEY,
    subject_id       INT NOT NULL REFERENCES subjects (subject_id) ON DELETE RESTRICT,
    exam_name        TEXT NOT NULL,
    duration_minutes INT NOT NULL CHECK (duration_minutes > 0),
    total_marks      INT NOT NULL DEFAULT 0,
    pass_marks       INT NOT NULL DEFAULT 0,
    status           TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'published'))
);

CREATE TABLE IF NOT EXISTS questions (
    question_id    SERIAL PRIMARY KEY,
    exam_id        INT NOT NULL REFERENCES exams (exam_id) ON DELETE CASCADE,
    question_text  TEXT NOT NULL,
    option_a       TEXT NOT NULL DEFAULT '',
    option_b       TEXT NOT NULL DEFAULT '',
    option_c       TEXT NOT NULL DEFAULT '',
    option_d       TEXT NOT NULL DEFAULT '',
    correct_answer CHAR(1) NOT NULL CHECK (correct_answer IN ('A', 'B', 'C', 'D'))
);

CREATE TABLE IF NOT EXISTS results (
    result_id       SERIAL PRIMARY KEY,
    user_id         INT NOT NULL REFERENCES users (user_id) ON DELETE CASCADE,
    exam_id         INT NOT NULL REFERENCES exams (exam_id) ON DELETE CASCADE,
    score           INT NOT NULL,
    total_questions INT NOT NULL,
    status          TEXT NOT NULL CHECK (status IN ('PASSED', 'FAILED')),
    submitted_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (user_id, exam_id)
);

CREATE TABLE IF NOT EXISTS monitoring_logs (
    log_id        SERIAL PRIMARY KEY,
    user_id       INT NOT NULL REFERENCES users (user_id) ON DELETE CASCADE,
    exam_id       INT NOT NULL REFERENCES exams (exam_id) ON DELETE CASCADE,
    event_type    TEXT NOT NULL,
    event_details TEXT,
    logged_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS monitoring_logs_exam_idx ON monitoring_logs (exam_id, logged_at);
"""

@app.cli.command("init-db")
def init_db_command():
    """Create the portal tables if they do not exist."""
    with get_conn() as conn:
        conn.execute(SCHEMA_SQL)
        conn.commit()
    click.echo("Schema ready.")

@app.cli.command("create-admin")
@click.argument("email")
@click.argument("password")
def create_admin_command(email: str, password: str):
    """Create (or re-activate) a super admin account."""
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise click.BadParameter("not a valid email address", param_hint="EMAIL")
    rows = execute_returning("""
        INSERT INTO users (username, email, password_hash, role, is_active)
        VALUES (%s, %s, %s, 'super_admin', TRUE)
        ON CONFLICT (email) DO UPDATE
           SET password_hash = EXCLUDED.password_hash, role = 'super_admin', is_active = TRUE
        RETURNING user_id;
    """, (email.split("@", 1)[0], email, generate_password_hash(password)))
    click.echo(f"Super admin {email} (user_id={rows[0]['user_id']}) ready.")

# =============================================================================
# Rendering helpers (Markdown/HTML) for question text and options
# =============================================================================
_HTML_PATTERN = re.compile(r"</?\w+[^>]*>")

def _sanitize_if_enabled(html: str) -> str:
    if not SANITIZE_HTML:
        return html
    return bleach.clean(
        html,
        tags=BLEACH_ALLOWED_TAGS,
        attributes=BLEACH_ALLOWED_ATTRS,
        protocols=BLEACH_ALLOWED_PROTOCOLS,
        strip=True,
    )

@lru_cache(maxsize=1024)
def _render_rich_cached(text: str, allow_raw: bool, sanitize_flag: bool) -> str:
    if not text:
        return ""
    if allow_raw and _HTML_PATTERN.search(text):
        return _sanitize_if_enabled(text)
    if not allow_raw:
        text = str(escape(text))
    html = markdown.markdown(
        text,
        extensions=["fenced_code", "tables", "sane_lists", "attr_list"],
        output_format="html5",
    )
    return _sanitize_if_enabled(html)

def render_rich(text: Optional[str]) -> Markup:
    if text is None:
        return Markup("")
    text_str = text if isinstance(text, str) else str(text)
    return Markup(_render_rich_cached(text_str, ALLOW_RAW_HTML, SANITIZE_HTML))

app.jinja_env.filters["rich"] = render_rich

# =============================================================================
# Identity helpers
# =============================================================================
def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == "application/json"

def _landing_for(role: Optional[str]) -> str:
    if is_admin_role(role):
        return url_for("admin.admin_dashboard")
    return url_for("exam.dashboard")

def _load_account(user_id: int) -> Optional[Dict[str, Any]]:
    return fetch_one("""
        SELECT user_id, email, role, is_active, first_name, last_name
          FROM users WHERE user_id = %s;
    """, (user_id,))

def _account_by_email(email: str) -> Optional[Dict[str, Any]]:
    return fetch_one("""
        SELECT user_id, email, role, is_active, password_hash
          FROM users WHERE lower(email) = lower(%s);
    """, (email,))

def _establish(account: Dict[str, Any]):
    session.clear()
    session["user"] = {
        "user_id": account["user_id"],
        "email": account["email"],
        "role": account["role"],
    }

def _sanitize_next(next_url: Optional[str]) -> Optional[str]:
    if not next_url:
        return None
    parts = urlsplit(next_url)
    if parts.scheme or parts.netloc:
        return None
    path = parts.path or "/"
    blocked_prefixes = {_bp("/login"), _bp("/auth"), _bp("/signup")}
    if any(path == p or path.startswith(p + "/") for p in blocked_prefixes):
        return None
    return urlunsplit(("", "", path, parts.query, "")) or None

# =============================================================================
# Jinja helpers
# =============================================================================
@app.context_processor
def inject_user_and_base():
    return {
        "current_user_email": getattr(g, "user_email", None),
        "current_user_role": getattr(g, "user_role", None),
        "base_path": BASE_PATH,
        "bp": _bp,
        "google_enabled": oauth is not None,
    }

# =============================================================================
# Routes (auth, health, identity)
# =============================================================================
@app.get("/healthz")
def healthz():
    try:
        row = fetch_one("SELECT 1 AS ok;")
        ok = bool(row and row.get("ok") == 1)
        return ("ok" if ok else "db-fail", 200 if ok else 500)
    except Exception as e:
        print(f"[DB] health check failed: {e}")
        return ("db-fail", 500)

@app.get("/favicon.ico")
def favicon():
    return ("", 204)

@app.get("/")
def index():
    if getattr(g, "user_id", None):
        return redirect(_landing_for(g.user_role))
    return redirect(url_for("login"))

# --- LOGIN (email + password) ---
@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return render_template(
            "login.html",
            error=request.args.get("error"),
            next_url=_sanitize_next(request.args.get("next")) or "",
        )

    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    next_url = _sanitize_next(request.form.get("next"))
    try:
        account = _account_by_email(email) if email else None
    except Exception as e:
        print(f"[Auth] login lookup failed for {email}: {e}")
        abort(503)

    if not account or not account.get("password_hash") \
            or not check_password_hash(account["password_hash"], password):
        return redirect(url_for("login", error="invalid"))
    if not account.get("is_active"):
        return redirect(url_for("login", error="inactive"))

    _establish(account)
    print(f"[Auth] {email} signed in as {account['role']}")
    return redirect(next_url or _landing_for(account["role"]))

# --- SIGNUP (students only) ---
@app.route("/signup", methods=["GET", "POST"])
def signup():
    if request.method == "GET":
        return render_template("signup.html", error=request.args.get("error"))

    form = {k: (request.form.get(k) or "").strip() for k in
            ("first_name", "last_name", "email", "roll_no", "class_name")}
    form["email"] = form["email"].lower()
    password = request.form.get("password") or ""
    if not (form["first_name"] and form["last_name"] and EMAIL_RE.match(form["email"])):
        return redirect(url_for("signup", error="missing"))
    if len(password) < 8:
        return redirect(url_for("signup", error="weak"))

    try:
        if _account_by_email(form["email"]):
            return redirect(url_for("signup", error="exists"))
        execute("""
            INSERT INTO users (username, first_name, last_name, email, password_hash,
                               role, roll_no, class_name, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, TRUE);
        """, (f"{form['first_name']} {form['last_name']}", form["first_name"], form["last_name"],
              form["email"], generate_password_hash(password), STUDENT_ROLE,
              form["roll_no"] or None, form["class_name"] or None))
    except Exception as e:
        print(f"[Auth] signup failed for {form['email']}: {e}")
        return redirect(url_for("signup", error="server"))
    return redirect(url_for("login", msg="registered"))

# --- LOGOUT ---
@app.get("/logout")
def logout():
    user = session.get("user") or {}
    if user.get("user_id"):
        exam_sessions.clear_user(user["user_id"])
    session.clear()
    return redirect(url_for("login"))

# --- BLOCKED PAGE ---
@app.get("/auth/blocked")
def auth_blocked():
    """
    Public page for Google identities with no usable account.
    Query params:
      - status: 'inactive' | 'none'
    """
    status = (request.args.get("status") or "").strip().lower() or "none"
    if status == "inactive":
        msg = "Your account has been deactivated. Contact an administrator."
    else:
        msg = "No portal account uses this Google address. Sign up or ask an administrator."
    html = f"""
<!doctype html>
<html lang="en"><meta charset="utf-8">
<title>Access Restricted</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<body style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu,Arial,sans-serif;margin:2rem;line-height:1.5">
  <h1>Access Restricted</h1>
  <p>{escape(msg)}</p>
  <p><a href="{_bp('/login')}">Back to sign in</a></p>
</body></html>"""
    return (html, 403)

# --- GOOGLE SIGN-IN ---
@app.get("/auth/google")
def auth_google():
    provider = _require_oauth()
    return provider.google.authorize_redirect(_oauth_callback_url())

@app.get("/auth/google/callback")
def auth_callback():
    provider = _require_oauth()
    token = provider.google.authorize_access_token()
    claims = token.get("userinfo") or {}
    if not claims:
        resp = provider.google.get("https://openidconnect.googleapis.com/v1/userinfo")
        claims = resp.json()

    email = (claims.get("email") or "").strip().lower()
    if not email:
        abort(400, description="Google authentication failed (no email).")

    try:
        account = _account_by_email(email)
    except Exception as e:
        print(f"[Auth] lookup failed for {email}: {e}")
        abort(503)
    if not account:
        return redirect(f"{_bp('/auth/blocked')}?status={quote('none')}")
    if not account.get("is_active"):
        return redirect(f"{_bp('/auth/blocked')}?status={quote('inactive')}")

    _establish(account)
    print(f"[Auth] {email} signed in with Google as {account['role']}")
    return redirect(_landing_for(account["role"]))

# --- Register the SAME routes under BASE_PATH aliases (e.g., /portal/login) ---
if BASE_PATH:
    app.add_url_rule(f"{BASE_PATH}/", endpoint="index_bp", view_func=index, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/healthz", endpoint="healthz_bp", view_func=healthz, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/login", endpoint="login_bp", view_func=login, methods=["GET", "POST"])
    app.add_url_rule(f"{BASE_PATH}/signup", endpoint="signup_bp", view_func=signup, methods=["GET", "POST"])
    app.add_url_rule(f"{BASE_PATH}/logout", endpoint="logout_bp", view_func=logout, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/auth/blocked", endpoint="auth_blocked_bp", view_func=auth_blocked, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/auth/google", endpoint="auth_google_bp", view_func=auth_google, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/auth/google/callback", endpoint="auth_callback_bp", view_func=auth_callback, methods=["GET"])

def _is_public_path(path: str) -> bool:
    if path.startswith(STATIC_URL_PATH):
        return True
    public_exact = set()
    for p in ("/favicon.ico", "/healthz", "/login", "/signup", "/logout",
              "/auth/blocked", "/auth/google", "/auth/google/callback"):
        public_exact.update({p, _bp(p)})
    return path in public_exact

@app.before_request
def attach_identity():
    if _is_public_path(request.path):
        return
    user = session.get("user") or {}
    user_id = user.get("user_id")
    if user_id:
        # Re-check on every request so deactivation takes effect immediately
        account = _load_account(int(user_id))
        if account and account.get("is_active"):
            g.user_id = account["user_id"]
            g.user_email = account["email"]
            g.user_role = account["role"]
            return
        exam_sessions.clear_user(int(user_id))
        session.clear()
        if not _wants_json():
            return redirect(url_for("login", error="inactive"))
        return
    if _wants_json():
        return  # blueprints answer 401 themselves
    full = request.full_path if request.query_string else request.path
    return redirect(url_for("login", next=_sanitize_next(full)))

# =============================================================================
# Errors
# =============================================================================
@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    print(f"[app] unhandled {type(e).__name__} on {request.method} {request.path}: {e}")
    if _wants_json():
        return jsonify({"ok": False, "error": "internal error"}), 500
    return ("Something went wrong. Please try again.", 500)

# =============================================================================
# Blueprints
# =============================================================================
exam_sessions = ExamSessionManager()

_deps = {
    "fetch_one": fetch_one,
    "fetch_all": fetch_all,
    "execute": execute,
    "execute_returning": execute_returning,
    "sessions": exam_sessions,
}
app.register_blueprint(create_exam_blueprint(BASE_PATH, _deps, name="exam"))
app.register_blueprint(create_admin_blueprint(BASE_PATH, _deps, name="admin"))
app.register_blueprint(create_monitor_blueprint(BASE_PATH, _deps, name="monitor"))

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=True)
