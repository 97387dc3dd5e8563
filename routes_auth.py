import logging

from flask import Blueprint, current_app, jsonify
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sql_db import SessionLocal
from models import User
from auth import (
    hash_password, verify_password, login_required, current_user,
    create_session, destroy_session, session_token,
    set_session_cookie, clear_session_cookie,
)
from errors import Conflict, Unauthenticated, ValidationError
from validation import json_body, optional_str, require_str

log = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

USER_TYPES = ("student", "staff")
HOSTEL_TYPES = ("boys", "girls")
MIN_PASSWORD_LENGTH = 6


def _normalise_email(data) -> str:
    email = require_str(data, "email", "Email").lower()
    if "@" not in email:
        raise ValidationError("Please enter a valid email address")
    return email


def profile_fields(data: dict) -> dict:
    """Delivery profile fields a user may set on themselves."""
    fields = {}
    if "hostelType" in data:
        hostel_type = optional_str(data, "hostelType", max_len=20)
        if hostel_type is not None and hostel_type not in HOSTEL_TYPES:
            raise ValidationError("Hostel type must be boys or girls")
        fields["hostel_type"] = hostel_type
    if "hostelBlock" in data:
        fields["hostel_block"] = optional_str(data, "hostelBlock", max_len=20)
    if "roomNumber" in data:
        fields["room_number"] = optional_str(data, "roomNumber", max_len=20)
    return fields


@auth_bp.post("/register")
def register():
    data = json_body()
    name = require_str(data, "name", "Name", max_len=120)
    email = _normalise_email(data)
    pw = data.get("password")

    domain = current_app.config["ALLOWED_EMAIL_DOMAIN"].lower()
    if not email.endswith("@" + domain):
        raise ValidationError(f"Only @{domain} emails are allowed")
    if not isinstance(pw, str) or len(pw) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    user_type = data.get("userType") or "student"
    if user_type not in USER_TYPES:
        raise ValidationError("User type must be student or staff")

    with SessionLocal() as s:
        if s.scalar(select(User.id).where(User.email == email)):
            raise Conflict("Email already registered")

        u = User(
            name=name,
            email=email,
            password_hash=hash_password(pw),
            user_type=user_type,
            **profile_fields(data),
        )
        s.add(u)
        try:
            s.flush()
        except IntegrityError:
            s.rollback()
            raise Conflict("Email already registered")

        # new accounts are logged straight in
        sess = create_session(s, u.id)
        s.commit()

        log.info("registered user %s", u.id)
        resp = jsonify({"user": u.to_dict()})
        return set_session_cookie(resp, sess.token)


@auth_bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower() if isinstance(data.get("email"), str) else ""
    pw = data.get("password")

    with SessionLocal() as s:
        u = s.scalar(select(User).where(User.email == email)) if email else None
        if not u or not isinstance(pw, str) or not verify_password(pw, u.password_hash):
            raise Unauthenticated("Invalid email or password")

        destroy_session(s, session_token())
        sess = create_session(s, u.id)
        s.commit()

        resp = jsonify({"user": u.to_dict()})
        return set_session_cookie(resp, sess.token)


@auth_bp.post("/logout")
def logout():
    with SessionLocal() as s:
        destroy_session(s, session_token())
        s.commit()

    resp = jsonify({"message": "Logged out"})
    return clear_session_cookie(resp)


@auth_bp.get("/user")
@login_required
def me():
    return jsonify({"user": current_user().to_dict()})
