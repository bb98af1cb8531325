"""Runtime settings read from the environment."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .models import AuthCredentials


def _get_env(*keys: str, default: Optional[str] = None) -> Optional[str]:
    for key in keys:
        value = os.environ.get(key)
        if value is not None and value.strip() != "":
            return value.strip()
    return default


class Settings(BaseModel):
    """Server settings."""

    backend_url: str = ""
    backend_key: str = ""
    storage_file: str = str(Path.home() / ".foodtruck_storage.json")
    site_url: str = "http://localhost:5173"
    email: Optional[str] = None
    password: Optional[str] = None
    delivery_fee: Decimal = Decimal("5")
    storage_poll_interval: float = 1.0
    http_timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from FOODTRUCK_* variables, keeping defaults for unset ones."""
        values = {
            "backend_url": _get_env("FOODTRUCK_BACKEND_URL", "SUPABASE_URL"),
            "backend_key": _get_env("FOODTRUCK_BACKEND_KEY", "SUPABASE_ANON_KEY"),
            "storage_file": _get_env("FOODTRUCK_STORAGE_FILE"),
            "site_url": _get_env("FOODTRUCK_SITE_URL"),
            "email": _get_env("FOODTRUCK_EMAIL"),
            "password": _get_env("FOODTRUCK_PASSWORD"),
            "delivery_fee": _get_env("FOODTRUCK_DELIVERY_FEE"),
            "storage_poll_interval": _get_env("FOODTRUCK_STORAGE_POLL_INTERVAL"),
            "http_timeout": _get_env("FOODTRUCK_HTTP_TIMEOUT"),
            "log_level": _get_env("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def credentials(self) -> Optional[AuthCredentials]:
        if self.email and self.password:
            return AuthCredentials(email=self.email, password=self.password)
        return None

    @property
    def password_reset_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/reset-password"

    def require_backend(self) -> None:
        if not self.backend_url:
            raise RuntimeError("FOODTRUCK_BACKEND_URL is empty. Set it to the backend project URL")
        if not self.backend_key:
            raise RuntimeError("FOODTRUCK_BACKEND_KEY is empty. Set it to the backend public API key")
