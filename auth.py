from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import ConfigError, Settings

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 6


class TokenExpired(Exception):
    pass


class InvalidToken(Exception):
    pass


class AuthService:
    """Password hashing and bearer tokens, bound to one signing key."""

    def __init__(self, secret_key: str, expires_in: timedelta = timedelta(days=7),
                 bcrypt_rounds: int = 12, algorithm: str = ALGORITHM):
        if not secret_key:
            raise ConfigError("AuthService requires a non-empty signing key")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.expires_in = expires_in
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=bcrypt_rounds)

    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self.pwd_context.verify(password, hashed)
        except ValueError:
            # unrecognized hash format
            return False

    def create_access_token(self, user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        user_id = str(user.get("_id") or user.get("id"))
        expire = datetime.now(timezone.utc) + (expires_delta if expires_delta is not None else self.expires_in)
        to_encode = {
            "sub": user_id,
            "userId": user_id,
            "email": user.get("email"),
            "role": user.get("role", "user"),
            "exp": expire,
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpired("Token expired")
        except JWTError:
            raise InvalidToken("Invalid token")
        if not payload.get("sub"):
            raise InvalidToken("Invalid token")
        return payload


def create_auth_service(settings: Settings) -> AuthService:
    return AuthService(
        settings.jwt_secret,
        expires_in=timedelta(days=settings.jwt_expire_days),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
