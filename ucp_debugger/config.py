import os
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from ucp_debugger.clients.ucp import DEFAULT_PLATFORM_PROFILE

load_dotenv()


class Settings:
    """Runtime configuration read from environment variables (.env supported)."""

    def get_ucp_base_url(self) -> Optional[str]:
        url = os.getenv("UCP_BASE_URL")
        if url:
            parsed = urlparse(url if "://" in url else f"http://{url}")
            if not parsed.netloc:
                raise ValueError(f"Invalid UCP_BASE_URL format: {url}")
        return url

    def get_platform_profile(self) -> str:
        return os.getenv("UCP_PLATFORM_PROFILE", DEFAULT_PLATFORM_PROFILE)

    def get_api_key(self) -> Optional[str]:
        return os.getenv("UCP_API_KEY") or None

    def get_http_timeout(self) -> float:
        return float(os.getenv("UCP_HTTP_TIMEOUT", "30"))

    def get_sse_keepalive_seconds(self) -> float:
        return float(os.getenv("SSE_KEEPALIVE_SECONDS", "15"))

    def get_uncorrelated_transaction_id(self) -> str:
        return os.getenv("UNCORRELATED_TRANSACTION_ID", "uncorrelated")

    def get_log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()
