import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


class ConfigError(RuntimeError):
    pass


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    jwt_secret: str
    mongodb_uri: str = "mongodb://localhost:27017"
    database_name: str = "tourvista"
    jwt_expire_days: int = 7
    port: int = 5000
    node_env: str = "development"
    bcrypt_rounds: int = 12
    seed_default_data: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.node_env == "production"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment. A missing JWT_SECRET is fatal."""
    env = os.environ if environ is None else environ

    secret = (env.get("JWT_SECRET") or "").strip()
    if not secret:
        raise ConfigError("JWT_SECRET is not set; refusing to start without a token signing key")

    try:
        expire_days = int(env.get("JWT_EXPIRE_DAYS", 7))
        port = int(env.get("PORT", 5000))
        rounds = int(env.get("BCRYPT_ROUNDS", 12))
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting: {e}")

    origins = [o.strip() for o in (env.get("CORS_ORIGINS") or "*").split(",") if o.strip()]

    return Settings(
        jwt_secret=secret,
        mongodb_uri=env.get("MONGODB_URI") or "mongodb://localhost:27017",
        database_name=env.get("DATABASE_NAME") or "tourvista",
        jwt_expire_days=expire_days,
        port=port,
        node_env=env.get("NODE_ENV") or "development",
        bcrypt_rounds=rounds,
        seed_default_data=_flag(env.get("SEED_DEFAULT_DATA"), True),
        cors_origins=origins or ["*"],
    )
