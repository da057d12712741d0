"""
Runtime settings.

Values come from MERGEGATE_* environment variables; anything unset falls
back to the defaults below.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "MERGEGATE_"


class Settings(BaseModel):
    """Settings shared by the service, adapters, and command parsing."""

    table_name: str = Field(default="mergegate", description="DynamoDB table holding proposals")
    region_name: Optional[str] = Field(default=None, description="AWS region for the DynamoDB adapter")
    bot_username: str = Field(default="mergegate", description="Mention that addresses review commands")
    default_priority: int = Field(default=0, ge=0, description="Priority used when r+ carries no p=N")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment (or any mapping, for tests)."""
        env = os.environ if environ is None else environ
        values = {
            "table_name": env.get(f"{ENV_PREFIX}TABLE"),
            "region_name": env.get(f"{ENV_PREFIX}REGION"),
            "bot_username": env.get(f"{ENV_PREFIX}BOT_USERNAME"),
            "default_priority": env.get(f"{ENV_PREFIX}DEFAULT_PRIORITY"),
        }
        return cls.model_validate({k: v for k, v in values.items() if v})
