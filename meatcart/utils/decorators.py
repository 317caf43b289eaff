# ------- meatcart/utils/decorators.py -------
from functools import wraps
from flask import g
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, verify_jwt_in_request

from ..errors import AuthenticationError, AuthorizationError
from ..extensions import db
from ..model import DeliveryBoy, User

KIND_USER = "user"
KIND_DELIVERY = "delivery"


def issue_token(identity: int, kind: str) -> str:
    return create_access_token(identity=str(identity), additional_claims={"kind": kind})


def _identity_id():
    try:
        return int(get_jwt_identity())
    except (TypeError, ValueError):
        return None


def _current_user() -> User | None:
    verify_jwt_in_request()
    if get_jwt().get("kind", KIND_USER) != KIND_USER:
        return None
    uid = _identity_id()
    return db.session.get(User, uid) if uid else None


def _current_delivery_boy() -> DeliveryBoy | None:
    verify_jwt_in_request()
    if get_jwt().get("kind") != KIND_DELIVERY:
        return None
    did = _identity_id()
    return db.session.get(DeliveryBoy, did) if did else None


def current_user() -> User:
    return g.current_user


def current_delivery_boy() -> DeliveryBoy:
    return g.current_delivery_boy


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        u = _current_user()
        if not u:
            raise AuthenticationError("Unauthorized")
        g.current_user = u
        return fn(*args, **kwargs)
    return wrapper


def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            u = _current_user()
            if not u:
                raise AuthenticationError("Unauthorized")
            if u.role not in roles:
                raise AuthorizationError(message or "Forbidden")
            g.current_user = u
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def delivery_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        d = _current_delivery_boy()
        if not d:
            raise AuthorizationError("Delivery boy access only")
        g.current_delivery_boy = d
        return fn(*args, **kwargs)
    return wrapper
