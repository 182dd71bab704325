"""Password hashing and login tokens."""
from datetime import datetime, timezone
from typing import Any, Dict

import bcrypt
import jwt

from config import Settings

JWT_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 10


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def create_access_token(user: Dict[str, Any], settings: Settings) -> str:
    """Sign a time-limited token carrying the user's id, email, name and admin flag."""
    issued = datetime.now(timezone.utc)
    payload = {
        "userId": str(user["_id"]),
        "email": user.get("email"),
        "name": user.get("name"),
        "isad": bool(user.get("isad", False)),
        "iat": issued,
        "exp": issued + settings.jwt_expires,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)
