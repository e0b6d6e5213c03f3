from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


# Daraja API base URLs
BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    """Runtime configuration read from the environment (and `.env`)."""

    mpesa_environment: Literal["sandbox", "production"] = "sandbox"
    mpesa_consumer_key: str = "your_consumer_key"
    mpesa_consumer_secret: str = "your_consumer_secret"
    mpesa_passkey: str = "your_passkey"
    mpesa_shortcode: str = "your_shortcode"
    callback_url: str = "https://example.com/api/mpesa/callback"

    token_timeout_seconds: float = 10
    push_timeout_seconds: float = 20

    # Oldest pushes are evicted from the callback registry beyond this size
    registry_max_entries: int = 10_000

    port: int = 5000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def base_url(self) -> str:
        return BASE_URLS[self.mpesa_environment]
