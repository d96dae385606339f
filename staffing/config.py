"""
Runtime settings, read from the environment (prefix ``STAFFING_``) or ``.env``.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

AIRTABLE_RECORD_ID_PATTERN = r"^rec[a-zA-Z0-9]{14}$"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STAFFING_", env_file=".env", extra="ignore"
    )

    backend: Literal["airtable", "memory"] = "airtable"

    airtable_api_key: str = ""
    airtable_base_id: str = ""
    airtable_api_url: str = "https://api.airtable.com/v0"

    # logical collection -> Airtable table name
    volunteers_table: str = "Membres"
    sectors_table: str = "Poles"
    timeslots_table: str = "Creneaux"
    assignments_table: str = "Affectations"
    missions_table: str = "Missions"

    bulk_ttl_seconds: float = 120.0
    # snapshots older than bulk_ttl * factor are never served
    max_staleness_factor: float = 10.0
    result_ttl_seconds: float = 300.0
    empty_result_ttl_seconds: float = 600.0
    max_cache_entries: int = 100

    fetch_timeout_seconds: float = 10.0
    # Airtable allows 5 requests per second per base
    min_request_interval_seconds: float = 0.2

    record_id_pattern: str = AIRTABLE_RECORD_ID_PATTERN

    log_level: str = "INFO"

    @property
    def max_staleness_seconds(self) -> float:
        return self.bulk_ttl_seconds * self.max_staleness_factor

    def table_names(self) -> dict[str, str]:
        return {
            "volunteers": self.volunteers_table,
            "sectors": self.sectors_table,
            "timeslots": self.timeslots_table,
            "assignments": self.assignments_table,
            "missions": self.missions_table,
        }


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
