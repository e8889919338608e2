import os
from typing import List, Literal, Optional

from pydantic import BaseModel

# -------------------
# Config (env-driven)
# -------------------


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    order_hold_minutes: int = 15
    pickup_grace_seconds: int = 60
    # "always" restocks from any non-terminal status, "before_preparation"
    # only from pending/confirmed
    cancel_restock_policy: Literal["always", "before_preparation"] = "always"

    sweeper_enabled: bool = True
    sweep_interval_seconds: float = 60

    log_level: str = "INFO"
    port: int = 8000
    cors_origins: List[str] = ["*"]


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME") or None,
        order_hold_minutes=int(os.getenv("ORDER_HOLD_MINUTES", 15)),
        pickup_grace_seconds=int(os.getenv("PICKUP_GRACE_SECONDS", 60)),
        cancel_restock_policy=os.getenv("CANCEL_RESTOCK_POLICY", "always").strip().lower(),
        sweeper_enabled=_env_flag("SWEEPER_ENABLED", "1"),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", 60)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", 8000)),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


settings = load_settings()
