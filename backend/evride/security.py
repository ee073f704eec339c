from dataclasses import dataclass
from datetime import datetime, timedelta
import bcrypt
from jose import JWTError, jwt
from .config import settings

ALGO = "HS256"


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str


def create_access_token(user_id: int, role: str, expires_minutes: int | None = None) -> str:
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    to_encode = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key.get_secret_value(), algorithm=ALGO)

def decode_access_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, settings.secret_key.get_secret_value(), algorithms=[ALGO])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    sub = payload.get("sub")
    if not sub:
        raise ValueError("Token missing subject")
    try:
        user_id = int(sub)
    except (TypeError, ValueError) as exc:
        raise ValueError("Token subject is not a user id") from exc
    return Identity(user_id=user_id, role=str(payload.get("role") or "user"))

def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False

def hash_password(plain: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")
