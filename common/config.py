import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

DEFAULT_GMAIL_QUERY = "from:(bank OR payment OR transaction) newer_than:7d"


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Config:
    supabase_url: str
    supabase_key: str
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    midtrans_server_key: str = ""
    midtrans_is_production: bool = False
    app_base_url: str = "http://localhost:3000"
    cron_api_key: Optional[str] = None
    http_timeout: float = 10.0
    connect_timeout: float = 5.0
    gmail_query: str = DEFAULT_GMAIL_QUERY
    gmail_max_results: int = 50
    port: int = 8080

    @property
    def timeout(self):
        """(connect, read) tuple handed to every outbound requests call"""
        return (self.connect_timeout, self.http_timeout)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Config":
        """
        Build configuration from environment variables

        A local .env file is loaded first when reading the real process
        environment.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        supabase_url = environ.get("SUPABASE_URL")
        supabase_key = environ.get("SUPABASE_SERVICE_KEY")

        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        app_base_url = environ.get("APP_BASE_URL", "http://localhost:3000").rstrip("/")

        return cls(
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            google_client_id=environ.get("GOOGLE_CLIENT_ID", ""),
            google_client_secret=environ.get("GOOGLE_CLIENT_SECRET", ""),
            google_redirect_uri=environ.get(
                "GOOGLE_REDIRECT_URI", f"{app_base_url}/api/auth/google/callback"
            ),
            midtrans_server_key=environ.get("MIDTRANS_SERVER_KEY", ""),
            midtrans_is_production=_env_bool(environ.get("MIDTRANS_IS_PRODUCTION")),
            app_base_url=app_base_url,
            cron_api_key=environ.get("CRON_API_KEY") or None,
            http_timeout=_env_float(environ.get("HTTP_TIMEOUT"), 10.0),
            connect_timeout=_env_float(environ.get("CONNECT_TIMEOUT"), 5.0),
            gmail_query=environ.get("GMAIL_QUERY", DEFAULT_GMAIL_QUERY),
            gmail_max_results=_env_int(environ.get("GMAIL_MAX_RESULTS"), 50),
            port=_env_int(environ.get("PORT"), 8080),
        )


def configure_logging(level: Optional[str] = None):
    """Set up root logging once for the API process or the cron script"""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
