# consent_app/utils.py
import hashlib, time
from datetime import datetime, timedelta, timezone
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import jwt, JWTError
from consent_app.settings import settings

JWT_ALG = "HS256"
password_hasher = PasswordHasher()

def now_ms() -> int:
    return int(time.time() * 1000)

def sign_token(payload: dict, ttl_minutes: int = None) -> str:
    """Return a compact HS256 JWT for payload, expiring after ttl_minutes."""
    ttl = settings.SESSION_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    claims = dict(payload)
    claims["exp"] = datetime.now(timezone.utc) + timedelta(minutes=ttl)
    return jwt.encode(claims, settings.SIGN_KEY, algorithm=JWT_ALG)

def verify_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SIGN_KEY, algorithms=[JWT_ALG])
    except JWTError:
        return {}

def generate_cid(data: bytes) -> str:
    # IPFS-looking identifier derived from content
    return "Qm" + hashlib.sha256(data).hexdigest()[:44]

def hash_password(password: str) -> str:
    """Argon2id hash in PHC string format."""
    return password_hasher.hash(password)

def verify_password(password: str, stored: str) -> bool:
    try:
        return password_hasher.verify(stored, password)
    except (VerificationError, InvalidHashError):
        return False

def ms_to_datetime(ms: int) -> datetime:
    """Naive UTC datetime for an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(ms / 1000, timezone.utc).replace(tzinfo=None)