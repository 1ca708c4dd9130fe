import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigurationError

_PLACEHOLDER_KEYS = {"your_gemini_api_key_here"}


def _clean_env(value):
    if not value:
        return None
    cleaned = value.strip().strip("'\"")
    return cleaned or None


def _env_flag(name, default):
    value = _clean_env(os.getenv(name))
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime configuration collected from the environment."""

    database_url: str = "sqlite:///tracker.db"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    generation_backend: str = "api_key"
    gcp_project_id: str | None = None
    gcp_location: str = "europe-west1"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str | None = None
    app_url: str = "http://localhost:5173"
    supabase_jwt_secret: str | None = None
    request_timeout_seconds: float = 60.0
    strict_json_responses: bool = True

    def require_gemini_key(self) -> str:
        if not self.gemini_api_key or self.gemini_api_key in _PLACEHOLDER_KEYS:
            raise ConfigurationError("Please add your Gemini API key (GEMINI_API_KEY)")
        return self.gemini_api_key

    def require_google_client(self):
        if not self.google_client_id or not self.google_client_secret:
            raise ConfigurationError(
                "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set for Gmail access"
            )
        return self.google_client_id, self.google_client_secret

    def require_redirect_uri(self) -> str:
        if not self.google_redirect_uri:
            raise ConfigurationError("GOOGLE_REDIRECT_URI is not set")
        return self.google_redirect_uri

    def require_jwt_secret(self) -> str:
        if not self.supabase_jwt_secret:
            raise ConfigurationError("SUPABASE_JWT_SECRET is not set")
        return self.supabase_jwt_secret


def load_settings():
    load_dotenv()

    timeout = _clean_env(os.getenv("REQUEST_TIMEOUT_SECONDS"))
    try:
        timeout_seconds = float(timeout) if timeout else 60.0
    except ValueError as exc:
        raise ConfigurationError(f"REQUEST_TIMEOUT_SECONDS is not a number: {timeout!r}") from exc

    return Settings(
        database_url=_clean_env(os.getenv("DATABASE_URL")) or "sqlite:///tracker.db",
        gemini_api_key=_clean_env(
            os.getenv("GEMINI_API_KEY") or os.getenv("VITE_GEMINI_API_KEY")
        ),
        gemini_model=_clean_env(os.getenv("GEMINI_MODEL")) or "gemini-2.0-flash",
        gemini_base_url=_clean_env(os.getenv("GEMINI_BASE_URL"))
        or "https://generativelanguage.googleapis.com/v1beta",
        generation_backend=(_clean_env(os.getenv("GENERATION_BACKEND")) or "api_key").lower(),
        gcp_project_id=_clean_env(
            os.getenv("GCP_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT")
        ),
        gcp_location=_clean_env(os.getenv("GCP_LOCATION")) or "europe-west1",
        google_client_id=_clean_env(os.getenv("GOOGLE_CLIENT_ID")),
        google_client_secret=_clean_env(os.getenv("GOOGLE_CLIENT_SECRET")),
        google_redirect_uri=_clean_env(os.getenv("GOOGLE_REDIRECT_URI")),
        app_url=(_clean_env(os.getenv("APP_URL")) or "http://localhost:5173").rstrip("/"),
        supabase_jwt_secret=_clean_env(os.getenv("SUPABASE_JWT_SECRET")),
        request_timeout_seconds=timeout_seconds,
        strict_json_responses=_env_flag("STRICT_JSON_RESPONSES", True),
    )
