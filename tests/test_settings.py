import json
from pathlib import Path

import pytest

from invoicedesk.errors import ConfigurationError
from invoicedesk.settings import LocalState, Settings, load_settings

ENV_NAMES = (
    "SUPABASE_URL", "SUPABASE_ANON_KEY", "INVOICEDESK_REDIRECT_URL", "INVOICEDESK_EXPORT_DIR",
    "WKHTMLTOPDF", "WKHTMLTOPDF_CMD", "INVOICEDESK_LOG_LEVEL", "LOG_LEVEL", "REDIRECT_URL", "EXPORT_DIR",
    "ACTIVITY_PAGE_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_json_file_then_environment(tmp_path, clean_env):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "supabase_url": "https://file.supabase.co/",
        "supabase_anon_key": "file-key",
        "activity_page_size": 10,
        "unknown": "ignored",
    }))
    clean_env.setenv("SUPABASE_ANON_KEY", ' "env-key" ')

    settings = load_settings(path)

    assert isinstance(settings, Settings)
    assert settings.supabase_url == "https://file.supabase.co"
    assert settings.supabase_anon_key == "env-key"
    assert settings.activity_page_size == 10


def test_wkhtmltopdf_env_wins_over_cmd(tmp_path, clean_env):
    clean_env.setenv("WKHTMLTOPDF_CMD", "/opt/a")
    clean_env.setenv("WKHTMLTOPDF", "'/opt/b'")
    settings = load_settings(tmp_path / "missing.json")
    assert settings.wkhtmltopdf_path == "/opt/b"


def test_prefixed_env_names_override_the_file(tmp_path, clean_env):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"redirect_url": "file://cb", "log_level": "WARNING", "export_dir": "/from/file"}))
    clean_env.setenv("INVOICEDESK_REDIRECT_URL", "myapp://auth")
    clean_env.setenv("INVOICEDESK_EXPORT_DIR", "")

    settings = load_settings(path)

    assert settings.redirect_scheme == "myapp"
    assert settings.log_level == "WARNING"
    assert settings.export_dir == "/from/file"


def test_init_values_beat_the_environment(clean_env):
    clean_env.setenv("SUPABASE_URL", "https://env.supabase.co")
    assert Settings(supabase_url="https://init.supabase.co").supabase_url == "https://init.supabase.co"


def test_defaults_without_file(tmp_path):
    settings = load_settings(tmp_path / "missing.json")
    assert settings.redirect_scheme == "invoicedesk"
    assert settings.activity_page_size == 20
    assert settings.logo_timeout == 20.0
    assert settings.wkhtmltopdf_path is None


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_unusable_json_is_ignored(tmp_path, content):
    path = tmp_path / "settings.json"
    path.write_text(content)
    assert load_settings(path).supabase_url == ""


@pytest.mark.parametrize("url", ["", "proj.supabase.co", "ftp://proj.supabase.co"])
def test_validate_backend_rejects_bad_url(url):
    with pytest.raises(ConfigurationError):
        Settings(supabase_url=url, supabase_anon_key="k").validate_backend()


def test_validate_backend_requires_key():
    with pytest.raises(ConfigurationError, match="SUPABASE_ANON_KEY"):
        Settings(supabase_url="https://proj.supabase.co").validate_backend()


def test_urls_and_paths(tmp_path):
    settings = Settings(supabase_url="https://proj.supabase.co", export_dir=str(tmp_path))
    assert settings.functions_url("create_checkout") == "https://proj.supabase.co/functions/v1/create_checkout"
    assert settings.export_path() == Path(tmp_path)


def test_local_state_persists(tmp_path):
    path = tmp_path / "nested" / "state.json"
    LocalState(path).set("has_completed_onboarding", True)

    assert LocalState(path).get("has_completed_onboarding") is True
    assert LocalState(path).get("other", "fallback") == "fallback"
