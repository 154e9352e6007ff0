"""Runtime settings loaded from environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field

from .models import AuthCredentials


class Settings(BaseModel):
    """Server configuration."""

    api_url: str = Field(default="http://localhost:8000", description="Storefront backend base URL")
    email: Optional[str] = Field(None, description="Auto-login email")
    password: Optional[str] = Field(None, description="Auto-login password")
    session_file: Optional[str] = Field(None, description="Credential store path")
    stripe_publishable_key: Optional[str] = Field(None, description="Stripe publishable key")
    stripe_return_url: Optional[str] = Field(None, description="Return URL for redirect-based methods")
    confirm_delay: float = Field(default=2.0, ge=0, description="Seconds to wait before order confirmation")
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from MILLETS_* and STRIPE_* environment variables."""
        values = {
            "api_url": os.environ.get("MILLETS_API_URL"),
            "email": os.environ.get("MILLETS_EMAIL"),
            "password": os.environ.get("MILLETS_PASSWORD"),
            "session_file": os.environ.get("MILLETS_SESSION_FILE"),
            "stripe_publishable_key": os.environ.get("STRIPE_PUBLISHABLE_KEY"),
            "stripe_return_url": os.environ.get("STRIPE_RETURN_URL"),
            "confirm_delay": os.environ.get("MILLETS_CONFIRM_DELAY"),
            "http_timeout": os.environ.get("MILLETS_HTTP_TIMEOUT"),
        }
        return cls(**{k: v for k, v in values.items() if v})

    @property
    def credentials(self) -> Optional[AuthCredentials]:
        """Auto-login credentials, if both are configured."""
        if self.email and self.password:
            return AuthCredentials(email=self.email, password=self.password)
        return None
