"""Application-wide configuration (name, logo, colors)."""

import logging
from typing import Optional

from .backend import BackendClient
from .models import AppConfig

logger = logging.getLogger(__name__)

CONFIG_ID = "config-unica"


class ConfigService:
    """The single row of the ``configuracoes`` table."""

    def __init__(self, backend: BackendClient) -> None:
        self.table = backend.table("configuracoes")
        self.current: Optional[AppConfig] = None

    async def fetch(self) -> AppConfig:
        """Read the configuration; defaults apply to unset values and to a missing row."""
        row = await self.table.select_maybe_one(filters={"id": CONFIG_ID})
        if row is None:
            logger.info("No configuration row, using defaults")
            self.current = AppConfig()
        else:
            row = {key: value for key, value in row.items() if value not in (None, "")}
            self.current = AppConfig.model_validate(row)
        return self.current

    async def save(
        self,
        app_name: str,
        logo_url: str = "",
        primary_color: str = "#ff0000",
        secondary_color: str = "#ffffff",
    ) -> AppConfig:
        """Write the configuration row and read it back."""
        config = AppConfig(
            id=CONFIG_ID,
            app_name=app_name,
            logo_url=logo_url,
            primary_color=primary_color,
            secondary_color=secondary_color,
        )
        await self.table.upsert(config.to_row())
        logger.info(f"Saved application configuration: {app_name}")
        return await self.fetch()
