import secrets
from datetime import timedelta
from functools import wraps

from flask import current_app, g, request
from werkzeug.security import generate_password_hash, check_password_hash

from sql_db import SessionLocal
from models import AuthSession, User, utcnow
from errors import AccessDenied, Unauthenticated


def hash_password(pw: str) -> str:
    return generate_password_hash(pw)


def verify_password(pw: str, pw_hash: str) -> bool:
    return check_password_hash(pw_hash, pw)


# -----------------------
# Server-side sessions
# -----------------------
def create_session(s, user_id: int) -> AuthSession:
    now = utcnow()
    hours = current_app.config["AUTH_SESSION_HOURS"]
    sess = AuthSession(
        token=secrets.token_urlsafe(32),
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(hours=hours),
    )
    s.add(sess)
    return sess


def resolve_session(s, token: str | None) -> User | None:
    """
    Map a cookie token to its user. Expired sessions are removed.
    The user row is read on every call so role changes apply immediately.
    """
    if not token:
        return None

    sess = s.get(AuthSession, token)
    if not sess:
        return None

    if sess.expires_at <= utcnow():
        s.delete(sess)
        s.commit()
        return None

    return s.get(User, sess.user_id)


def destroy_session(s, token: str | None):
    if not token:
        return
    sess = s.get(AuthSession, token)
    if sess:
        s.delete(sess)


def set_session_cookie(resp, token: str):
    cfg = current_app.config
    resp.set_cookie(
        cfg["AUTH_COOKIE_NAME"],
        token,
        max_age=cfg["AUTH_SESSION_HOURS"] * 3600,
        httponly=True,
        secure=cfg["AUTH_COOKIE_SECURE"],
        samesite="Lax",
    )
    return resp


def clear_session_cookie(resp):
    resp.delete_cookie(current_app.config["AUTH_COOKIE_NAME"])
    return resp


def session_token() -> str | None:
    return request.cookies.get(current_app.config["AUTH_COOKIE_NAME"])


def load_current_user():
    """before_request hook: puts the session's principal on flask.g."""
    g.user = None
    token = session_token()
    if not token:
        return
    with SessionLocal() as s:
        g.user = resolve_session(s, token)


def current_user() -> User | None:
    return g.get("user")


# -----------------------
# Decorators
# -----------------------
def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            raise Unauthenticated()
        return fn(*args, **kwargs)
    return wrapper


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None:
            raise Unauthenticated()
        if not user.is_admin:
            raise AccessDenied("Admin access required")
        return fn(*args, **kwargs)
    return wrapper
