from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, JsonConfigSettingsSource, SettingsConfigDict

from invoicedesk.errors import ConfigurationError

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
SETTINGS_JSON = DATA_DIR / "settings.json"
STATE_JSON = DATA_DIR / "state.json"


def _clean(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.strip().strip('"').strip("'").strip()


def _load_json(path: os.PathLike | str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def _dump_json(path: os.PathLike | str, data: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class _LenientJsonSettingsSource(JsonConfigSettingsSource):
    """A corrupt or non-object settings.json reads as empty instead of failing start-up."""

    def _read_file(self, file_path: Path) -> Dict[str, Any]:
        try:
            data = super()._read_file(file_path)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Backend endpoints and client tuning, from init values, then the environment, then data/settings.json."""

    model_config = SettingsConfigDict(
        json_file=SETTINGS_JSON,
        json_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    supabase_url: str = ""
    supabase_anon_key: str = ""

    redirect_url: str = Field(
        default="invoicedesk://auth-callback",
        validation_alias=AliasChoices("INVOICEDESK_REDIRECT_URL", "redirect_url"),
    )
    payment_return_host: str = "payment-return"
    branding_bucket: str = "branding"

    request_timeout: float = 15.0
    logo_timeout: float = 20.0
    activity_page_size: int = 20
    action_interval: float = 0.9

    export_dir: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("INVOICEDESK_EXPORT_DIR", "export_dir"),
    )
    # WKHTMLTOPDF wins over WKHTMLTOPDF_CMD
    wkhtmltopdf_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("WKHTMLTOPDF", "WKHTMLTOPDF_CMD", "wkhtmltopdf_path"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("INVOICEDESK_LOG_LEVEL", "log_level"),
    )

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings,
                                   file_secret_settings):
        return init_settings, env_settings, _LenientJsonSettingsSource(settings_cls)

    @field_validator("supabase_url", "supabase_anon_key", "redirect_url", mode="before")
    @classmethod
    def _strip_quotes(cls, v: Any) -> Any:
        return _clean(v) if v is not None else ""

    @field_validator("export_dir", "wkhtmltopdf_path", mode="before")
    @classmethod
    def _strip_path_quotes(cls, v: Any) -> Any:
        return _clean(v) or None

    @field_validator("supabase_url")
    @classmethod
    def _no_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def redirect_scheme(self) -> str:
        return urlparse(self.redirect_url).scheme

    def export_path(self) -> Path:
        if self.export_dir:
            return Path(self.export_dir)
        return Path(tempfile.gettempdir()) / "invoicedesk"

    def functions_url(self, name: str) -> str:
        return f"{self.supabase_url}/functions/v1/{name}"

    def validate_backend(self) -> None:
        parsed = urlparse(self.supabase_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                "Invalid SUPABASE_URL. Expected something like https://<project>.supabase.co "
                f"(current value: '{self.supabase_url}')"
            )
        if not self.supabase_anon_key:
            raise ConfigurationError("Missing SUPABASE_ANON_KEY.")


def load_settings(path: Optional[os.PathLike | str] = None) -> Settings:
    """
    Builds the settings from the environment over data/settings.json (or `path`).
    """
    if path is None:
        return Settings()

    class FileSettings(Settings):
        model_config = SettingsConfigDict(json_file=Path(path))

    return FileSettings()


class LocalState:
    """Small persisted key/value flags (data/state.json), e.g. the last known onboarding status."""

    def __init__(self, path: Optional[os.PathLike | str] = None):
        self.path = Path(path or STATE_JSON)

    def get(self, key: str, default: Any = None) -> Any:
        return _load_json(self.path).get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = _load_json(self.path)
        data[key] = value
        _dump_json(self.path, data)
