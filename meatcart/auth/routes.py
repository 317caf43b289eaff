# meatcart/auth/routes.py
import logging

from flask import request
from flask_jwt_extended import get_jwt, verify_jwt_in_request
from werkzeug.security import check_password_hash, generate_password_hash

from . import bp
from ..errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..model import DeliveryBoy, User
from ..utils.api import ok
from ..utils.dates import utcnow
from ..utils.decorators import KIND_DELIVERY, KIND_USER, _current_delivery_boy, _current_user, issue_token

logger = logging.getLogger(__name__)


@bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()

    if not email:
        raise ValidationError("Email required")
    if not password or len(password) < 6:
        raise ValidationError("Password required, min 6 chars")
    if not name:
        raise ValidationError("Name required")
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already registered")

    # public signups are always customers; admins come from `flask create-admin`
    user = User(
        email=email,
        name=name,
        phone=(data.get("phone") or "").strip() or None,
        password_hash=generate_password_hash(password),
        role="user",
    )
    db.session.add(user)
    db.session.commit()
    logger.info("user %s registered", user.id)

    return ok("Account created successfully", {
        "user": user.as_dict(),
        "token": issue_token(user.id, KIND_USER),
    }, 201)


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        raise AuthenticationError("Invalid email or password")

    return ok("You've logged in successfully", {
        "user": user.as_dict(),
        "token": issue_token(user.id, KIND_USER),
    })


@bp.post("/delivery/login")
def delivery_login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")

    d = DeliveryBoy.query.filter_by(email=email).first()
    if not d or not check_password_hash(d.password_hash, password):
        raise AuthenticationError("Invalid email or password")
    if not d.is_approved:
        raise AuthorizationError("Your account is pending approval")
    if d.status != "active":
        raise AuthorizationError(f"Your account is {d.status}")

    d.last_active = utcnow()
    db.session.commit()
    return ok("Login successful", {
        "delivery_boy": d.as_api(),
        "token": issue_token(d.id, KIND_DELIVERY),
    })


@bp.get("/me")
def me():
    verify_jwt_in_request()
    if get_jwt().get("kind") == KIND_DELIVERY:
        d = _current_delivery_boy()
        if not d:
            raise NotFoundError("Delivery boy not found")
        return ok("Profile", {"kind": KIND_DELIVERY, "delivery_boy": d.as_api()})

    u = _current_user()
    if not u:
        raise NotFoundError("User not found")
    return ok("Profile", {"kind": KIND_USER, "user": u.as_dict()})
