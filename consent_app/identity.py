# consent_app/identity.py
"""Registration, password login and bearer-token sessions for principals."""
import threading
from typing import List

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from consent_app import models, utils
from consent_app.db import session_scope
from consent_app.errors import Conflict, InvalidArgument, InvalidRole, Unauthorized
from consent_app.settings import settings

_register_lock = threading.Lock()


def _check_role(role: str):
    if role not in models.ROLES:
        raise InvalidRole(f"Unknown role {role!r}; expected one of {', '.join(models.ROLES)}")


def _next_address(db: Session) -> str:
    numeric = [int(a) for (a,) in db.query(models.User.address).all() if a.isdigit()]
    highest = max(numeric) if numeric else settings.FIRST_ADDRESS
    return str(max(highest, settings.FIRST_ADDRESS) + 1)


def register(db: Session, name: str, password: str, role: str) -> models.User:
    if not name or not password or not role:
        raise InvalidArgument("Name, password, and role are required")
    _check_role(role)
    password_hash = utils.hash_password(password)
    try:
        with _register_lock, session_scope(db):
            existing = db.query(models.User).filter(models.User.name == name, models.User.role == role).first()
            if existing:
                raise Conflict("User already exists")
            user = models.User(address=_next_address(db), name=name, role=role, password_hash=password_hash)
            db.add(user)
            db.add(models.Audit(actor=user.address, action="register", target=user.address, meta={"role": role}))
    except IntegrityError:
        # another process claimed the name or the address first
        raise Conflict("User already exists")
    db.refresh(user)
    logger.info("registered {} {} with address {}", role, name, user.address)
    return user


def authenticate(db: Session, name: str, password: str, role: str) -> models.User:
    if not name or not password or not role:
        raise InvalidArgument("Name, password, and role are required")
    user = db.query(models.User).filter(models.User.name == name, models.User.role == role).first()
    if not user or not utils.verify_password(password, user.password_hash):
        logger.warning("login failed for {} ({})", name, role)
        raise Unauthorized("Invalid name or password", authenticated=False)
    logger.info("login successful for {} ({})", name, user.address)
    return user


def issue_session(user: models.User) -> str:
    return utils.sign_token({"sub": user.address, "role": user.role, "name": user.name})


def resolve_session(db: Session, token: str) -> models.User:
    claims = utils.verify_token(token) if token else {}
    address = claims.get("sub")
    if not address:
        raise Unauthorized("Missing or invalid session token", authenticated=False)
    user = db.get(models.User, address)
    if user is None or user.role != claims.get("role"):
        raise Unauthorized("Unknown principal", authenticated=False)
    return user


def list_students(db: Session) -> List[models.User]:
    """Students who have uploaded at least one document."""
    return (
        db.query(models.User)
        .filter(models.User.role == models.ROLE_STUDENT)
        .filter(models.User.documents.any())
        .order_by(models.User.address)
        .all()
    )
