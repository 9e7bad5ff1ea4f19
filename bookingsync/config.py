from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Dict, List


DEFAULT_CATEGORY_KINDS = {
    "2": "primary",   # Pontoon BBQ Boat
    "3": "primary",   # 4.1m Polycraft 4 Person
    "4": "addon",
    "5": "addon",     # Child Life Jacket
    "6": "addon",
    "7": "addon",
}

DEFAULT_PRIMARY_KEYWORDS = ["boat", "polycraft", "bbq", "pontoon"]

DEFAULT_ADDON_NAMES = {
    "lillypad": "Lilly Pad",
    "fishingrods": "Fishing Rods",
    "fishingrod": "Fishing Rod",
    "kayak": "Kayak",
    "sup": "Stand Up Paddleboard",
    "standuppaddle": "Stand Up Paddleboard",
    "paddleboard": "Paddleboard",
    "esky": "Esky/Cooler",
    "cooler": "Cooler",
    "icebox": "Ice Box",
    "baitpack": "Bait Pack",
    "icepack": "Ice Pack",
    "bbqpack": "BBQ Pack",
    "foodpack": "Food Package",
    "cateringpack": "Catering Package",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Local database (booking store fallback + operator alerts)
    database_url: str = Field(
        default="sqlite:///./bookingsync.db",
        alias="DATABASE_URL"
    )

    # Local store: connect/lock timeout, retries on "database is locked" and similar
    db_timeout_seconds: float = Field(default=15, alias="DB_TIMEOUT_SECONDS")
    store_max_retries: int = Field(default=3, alias="STORE_MAX_RETRIES")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # All civil dates/times are stored in this timezone
    booking_timezone: str = Field(default="Australia/Sydney", alias="BOOKING_TIMEZONE")

    # "airtable" or "sql"; empty = airtable when configured, otherwise sql
    storage_backend: str = Field(default="", alias="STORAGE_BACKEND")

    # ==============================================
    # Airtable (booking store)
    # ==============================================
    airtable_api_key: str = Field(default="", alias="AIRTABLE_API_KEY")
    airtable_base_id: str = Field(default="", alias="AIRTABLE_BASE_ID")
    airtable_bookings_table_id: str = Field(default="tblRe0cDmK3bG2kPf", alias="AIRTABLE_BOOKINGS_TABLE_ID")
    airtable_base_url: str = Field(default="https://api.airtable.com/v0", alias="AIRTABLE_BASE_URL")

    # ==============================================
    # Checkfront (booking engine)
    # ==============================================
    checkfront_host: str = Field(default="", alias="CHECKFRONT_HOST")
    checkfront_consumer_key: str = Field(default="", alias="CHECKFRONT_CONSUMER_KEY")
    checkfront_consumer_secret: str = Field(default="", alias="CHECKFRONT_CONSUMER_SECRET")
    checkfront_page_size: int = Field(default=100, alias="CHECKFRONT_PAGE_SIZE")

    # ==============================================
    # Twilio (customer SMS + admin alerts)
    # ==============================================
    twilio_account_sid: str = Field(default="", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str = Field(default="", alias="TWILIO_FROM_NUMBER")
    admin_sms_recipient: str = Field(default="", alias="ADMIN_SMS_RECIPIENT")

    # ==============================================
    # Outbound HTTP policy (all collaborators)
    # ==============================================
    http_timeout_seconds: float = Field(default=20, alias="HTTP_TIMEOUT_SECONDS")
    http_max_retries: int = Field(default=3, alias="HTTP_MAX_RETRIES")
    http_retry_base_delay: float = Field(default=1.0, alias="HTTP_RETRY_BASE_DELAY")
    http_retry_max_delay: float = Field(default=30.0, alias="HTTP_RETRY_MAX_DELAY")

    # ==============================================
    # Reconciliation scheduler
    # ==============================================
    reconciliation_enabled: bool = Field(default=True, alias="RECONCILIATION_ENABLED")
    reconciliation_interval_hours: float = Field(default=6, alias="RECONCILIATION_INTERVAL_HOURS")
    reconciliation_startup_delay_seconds: int = Field(default=30, alias="RECONCILIATION_STARTUP_DELAY")
    reconciliation_days_back: int = Field(default=14, alias="RECONCILIATION_DAYS_BACK")
    reconciliation_days_forward: int = Field(default=14, alias="RECONCILIATION_DAYS_FORWARD")
    gap_fill_concurrency: int = Field(default=4, alias="GAP_FILL_CONCURRENCY")
    gap_alert_example_limit: int = Field(default=3, alias="GAP_ALERT_EXAMPLE_LIMIT")

    # ==============================================
    # Item classification tables (JSON in env)
    # ==============================================
    item_category_kinds: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_KINDS),
        alias="ITEM_CATEGORY_KINDS"
    )
    primary_item_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PRIMARY_KEYWORDS),
        alias="PRIMARY_ITEM_KEYWORDS"
    )
    addon_display_names: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ADDON_NAMES),
        alias="ADDON_DISPLAY_NAMES"
    )

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("", "airtable", "sql"):
            raise ValueError("STORAGE_BACKEND must be 'airtable' or 'sql'")
        return v

    @field_validator('item_category_kinds')
    @classmethod
    def validate_category_kinds(cls, v: Dict[str, str]) -> Dict[str, str]:
        for category_id, kind in v.items():
            if kind not in ("primary", "addon"):
                raise ValueError(f"Category {category_id}: kind must be 'primary' or 'addon'")
        return {str(k): kind for k, kind in v.items()}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def has_airtable_config(self) -> bool:
        return bool(self.airtable_api_key and self.airtable_base_id and self.airtable_bookings_table_id)

    @property
    def has_checkfront_config(self) -> bool:
        """Check if all Checkfront credentials are present"""
        return bool(
            self.checkfront_host and
            self.checkfront_consumer_key and
            self.checkfront_consumer_secret
        )

    @property
    def has_twilio_config(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @property
    def effective_storage_backend(self) -> str:
        if self.storage_backend:
            return self.storage_backend
        return "airtable" if self.has_airtable_config else "sql"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
