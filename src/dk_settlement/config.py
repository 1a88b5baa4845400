"""Runtime configuration from environment variables.

Variables (a local .env file is honoured):
    SUPABASE_URL            Supabase project URL
    SUPABASE_SERVICE_KEY    Supabase service key
    SETTLEMENT_POLL_MINUTES Interval of the settlement sweep (default 5)
    SETTLEMENT_PRICE_AREAS  Comma-separated price areas to fetch (default DK1,DK2)
"""

import os
from typing import Self

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    poll_minutes: int = Field(default=5, ge=1)
    price_areas: list[str] = Field(default_factory=lambda: ["DK1", "DK2"])

    @classmethod
    def from_env(cls) -> Self:
        """Build settings from the environment, loading .env first."""
        load_dotenv()
        areas = os.getenv("SETTLEMENT_PRICE_AREAS", "DK1,DK2")
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            poll_minutes=int(os.getenv("SETTLEMENT_POLL_MINUTES", "5")),
            price_areas=[a.strip() for a in areas.split(",") if a.strip()],
        )
