from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Paths
    cache_db_path: str = Field(default="mealy/data/mealy_cache.db", alias="CACHE_DB_PATH")

    # POI cache: Postgres (production). Takes priority over cache_db_path.
    cache_database_url: str | None = Field(default=None, alias="CACHE_DATABASE_URL")

    # Overpass
    overpass_url: str = Field(default="https://overpass-api.de/api/interpreter", alias="OVERPASS_URL")
    overpass_timeout_s: float = Field(default=30.0, alias="OVERPASS_TIMEOUT_S")
    overpass_query_timeout_s: int = Field(default=15, alias="OVERPASS_QUERY_TIMEOUT_S")
    overpass_user_agent: str = Field(default="Midi-Mealy/1.0", alias="OVERPASS_USER_AGENT")
    # Comma-separated amenity values selected around the office
    overpass_amenities: str = Field(default="restaurant,fast_food", alias="OVERPASS_AMENITIES")

    # POI cache controls
    poi_cache_ttl_s: int = Field(default=60 * 60 * 2, gt=0, alias="POI_CACHE_TTL_S")  # 2h
    poi_max_results: int = Field(default=1000, alias="POI_MAX_RESULTS")
    poi_radius_min_m: float = Field(default=10.0, alias="POI_RADIUS_MIN_M")
    poi_radius_max_m: float = Field(default=10000.0, alias="POI_RADIUS_MAX_M")
    poi_default_radius_m: float = Field(default=800.0, alias="POI_DEFAULT_RADIUS_M")
    poi_source: str = Field(default="osm", alias="POI_SOURCE")
    poi_sweep_on_read: bool = Field(default=False, alias="POI_SWEEP_ON_READ")
    poi_single_flight: bool = Field(default=False, alias="POI_SINGLE_FLIGHT")

    # Reviews
    reviews_backend: str = Field(default="sqlite", alias="REVIEWS_BACKEND")  # sqlite | supabase

    # Supabase
    supa_url: str | None = Field(default=None, alias="SUPA_URL")
    supa_service_role_key: str | None = Field(default=None, alias="SUPA_SERVICE_ROLE_KEY")
    supa_reviews_table: str = Field(default="reviews", alias="SUPA_REVIEWS_TABLE")
    supa_timeout_s: float = Field(default=20.0, alias="SUPA_TIMEOUT_S")
    supa_ids_chunk: int = Field(default=200, alias="SUPA_IDS_CHUNK")

    @property
    def amenities(self) -> list[str]:
        return [a.strip() for a in self.overpass_amenities.split(",") if a.strip()]


settings = Settings()
