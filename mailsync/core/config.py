"""Sync engine configuration settings."""

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class SyncSettings(BaseSettings):
    """Collection sync engine configuration."""

    # API Settings
    api_port: int = Field(default=8000, description="Status API server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Account
    account_id: str = Field(default="", description="Account served by this engine")
    organization_unit: str = Field(
        default="folder",
        description="Account organization unit: 'folder' or 'label'"
    )

    # Remote API Settings
    remote_api_url: str = Field(
        default="https://api.example.com",
        description="Base URL of the remote collection API"
    )
    remote_api_token: str = Field(default="", description="Bearer token for the remote API")
    remote_api_timeout: float = Field(default=60.0, description="Request timeout in seconds")
    supports_metadata: bool = Field(
        default=True,
        description="Whether the backend exposes the metadata endpoint"
    )

    # MongoDB Settings
    mongodb_uri: str = Field(
        default="mongodb://localhost:27017/?directConnection=true",
        description="MongoDB connection string"
    )
    mongodb_database: str = Field(default="mailsync", description="Database name")
    mongodb_collection_state: str = Field(default="sync_state")
    mongodb_items_prefix: str = Field(default="items_")

    # Backoff Settings (seconds)
    backoff_base_delay: float = Field(default=20.0, description="Delay restored by reset()")
    backoff_multiplier: float = Field(default=1.4)
    backoff_max_delay: float = Field(default=300.0)

    # Paging Settings
    initial_page_size: int = Field(default=30, description="First page size for most collections")
    organization_page_size: int = Field(
        default=1000,
        description="First page size for the folders/labels collection"
    )
    max_page_size: int = Field(default=200)
    page_growth_factor: float = Field(default=1.5)
    page_interval: float = Field(
        default=1.5,
        description="Minimum seconds between page requests of one collection"
    )
    metadata_page_size: int = Field(default=200)

    # Persistence / push settings
    state_write_delay: float = Field(
        default=0.1,
        description="Trailing debounce for state writes in seconds"
    )
    delta_poll_interval: float = Field(default=30.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "MAILSYNC_"
        case_sensitive = False
        extra = "ignore"


def get_settings() -> SyncSettings:
    """Get sync settings from the environment."""
    return SyncSettings()


settings = get_settings()
