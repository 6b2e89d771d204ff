"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class MailboxSyncSettings(BaseSettings):
    """Engine settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local store
    database_path: Path = Path("data/mailbox_sync.db")
    blob_dir: Path = Path("data/blobs")
    store_html_bodies: bool = True

    # OAuth client (connect flow and token refresh)
    client_secret_path: Path = Path("credentials/client_secret.json")
    google_client_id: str = ""
    google_client_secret: str = ""

    # Upstream account
    provider: str = "google"
    inbox_label: str = "INBOX"

    # Full sync: pages walked per call and ids per page
    full_sync_max_pages: int = 5
    full_sync_page_size: int = 100

    # Delta sync: most recent ids fetched, no continuation
    delta_max_messages: int = 50

    # Paginated sync: first page size; background continuation page ceiling
    # counts the synchronous first page
    paginated_page_size: int = 50
    background_max_pages: int = 20

    # History sync: history-list pages walked per call
    history_max_pages: int = 5

    # Message fetch: concurrent gets per batch and pause between batches
    fetch_batch_size: int = 10
    inter_batch_delay_seconds: float = 0.1

    # Retry on 429 / 5xx
    max_retries: int = 3
    base_delay_seconds: float = 1.0

    # Persistence: messages per transaction and per-transaction ceilings
    chunk_size: int = 10
    transaction_max_wait_seconds: float = 10.0
    transaction_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create data and credential directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        self.client_secret_path.parent.mkdir(parents=True, exist_ok=True)
