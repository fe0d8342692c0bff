from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./labreserve.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Laboratory inventory
    # ==============================================
    # Comma-separated instrument ids (0 is reserved for "all equipment")
    equipment_ids: str = Field(default="1,2,3,4,5,6,7,8", alias="EQUIPMENT_IDS")

    # Comma-separated daily time slot ids, in display order
    time_slots: str = Field(default="08:00,12:00", alias="TIME_SLOTS")

    # ==============================================
    # Quotas
    # ==============================================
    max_slots_per_person: int = Field(default=6, alias="MAX_SLOTS_PER_PERSON")
    rate_limit_window_seconds: int = Field(default=3600, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_inserts: int = Field(default=20, alias="RATE_LIMIT_MAX_INSERTS")

    # Requests accepted Monday 07:00 to Friday 12:00 only
    booking_window_enabled: bool = Field(default=False, alias="BOOKING_WINDOW_ENABLED")

    # Largest range a single block request may materialize
    max_block_range_days: int = Field(default=366, alias="MAX_BLOCK_RANGE_DAYS")

    # What a single/range block does to pending and approved bookings:
    # "overwrite" displaces them, "preserve" leaves them and skips the slot
    block_overwrite_policy: str = Field(default="overwrite", alias="BLOCK_OVERWRITE_POLICY")

    # Retries for idempotent store steps (deletes, marker cleanup)
    store_retry_attempts: int = Field(default=3, alias="STORE_RETRY_ATTEMPTS")
    store_retry_base_delay: float = Field(default=0.05, alias="STORE_RETRY_BASE_DELAY")

    # ==============================================
    # Administrator
    # ==============================================
    admin_username: str = Field(default="admin", alias="ADMIN_USERNAME")
    admin_password_hash: str = Field(default="", alias="ADMIN_PASSWORD_HASH")

    # Sender address shown to the administrator when notifying requesters
    notification_email: str = Field(default="", alias="NOTIFICATION_EMAIL")

    # slowapi limit applied per client IP on submissions
    api_rate_limit: str = Field(default="30/minute", alias="API_RATE_LIMIT")
    api_rate_limit_enabled: bool = Field(default=True, alias="API_RATE_LIMIT_ENABLED")
    # slowapi storage backend, e.g. redis://localhost:6379 for several instances
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    @field_validator('time_slots')
    @classmethod
    def validate_time_slots(cls, v: str) -> str:
        """Slot ids are part of the slot key and must not contain the separator"""
        slots = [s.strip() for s in v.split(",") if s.strip()]
        if not slots:
            raise ValueError("TIME_SLOTS must list at least one slot")
        for slot in slots:
            if "-" in slot or slot == "all":
                raise ValueError(f"Invalid time slot id: {slot!r}")
        return v

    @field_validator("block_overwrite_policy")
    @classmethod
    def validate_overwrite_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("overwrite", "preserve"):
            raise ValueError("BLOCK_OVERWRITE_POLICY must be overwrite or preserve")
        return v

    @field_validator('equipment_ids')
    @classmethod
    def validate_equipment_ids(cls, v: str) -> str:
        try:
            ids = [int(e.strip()) for e in v.split(",") if e.strip()]
        except ValueError:
            raise ValueError("EQUIPMENT_IDS must be comma-separated integers")
        if not ids or any(i <= 0 for i in ids):
            raise ValueError("EQUIPMENT_IDS must be positive integers")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def equipment_id_list(self) -> List[int]:
        return [int(e.strip()) for e in self.equipment_ids.split(",") if e.strip()]

    @property
    def time_slot_list(self) -> List[str]:
        return [s.strip() for s in self.time_slots.split(",") if s.strip()]

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
