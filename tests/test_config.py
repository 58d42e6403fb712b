import pytest
from pydantic import ValidationError

from sessionkit.config import DEFAULT_REDIRECT_ALLOWLIST, Settings


def test_defaults():
    settings = Settings(jwt_secret="x" * 40)

    assert settings.access_token_ttl_minutes == 30
    assert settings.refresh_token_ttl_minutes == 14 * 24 * 60
    assert settings.oauth_redirect_allowlist == DEFAULT_REDIRECT_ALLOWLIST
    assert settings.default_oauth_provider == "kakao"


def test_allowlist_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv(
        "OAUTH_REDIRECT_ALLOWLIST", " https://a.test/cb , https://b.test/cb,, "
    )
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    monkeypatch.setenv("DEFAULT_OAUTH_PROVIDER", " GitHub ")

    settings = Settings.from_env()

    assert settings.oauth_redirect_allowlist == ["https://a.test/cb", "https://b.test/cb"]
    assert settings.access_token_ttl_minutes == 5
    assert settings.default_oauth_provider == "github"


@pytest.mark.parametrize("field", ["access_token_ttl_minutes", "refresh_token_ttl_minutes"])
def test_non_positive_ttl_rejected(field):
    with pytest.raises(ValidationError):
        Settings(jwt_secret="x" * 40, **{field: 0})


def test_generated_jwt_secret_is_persisted(tmp_path, monkeypatch):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))

    first = Settings(jwt_secret=None)
    second = Settings(jwt_secret=None)

    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret == second.jwt_secret
    assert (tmp_path / ".jwt_secret").read_text() == first.jwt_secret


def test_from_env_without_jwt_secret_generates_one(tmp_path, monkeypatch):
    """An unset JWT_SECRET falls back to the shared secret file instead of failing."""
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))

    settings = Settings.from_env()

    assert settings.jwt_secret == (tmp_path / ".jwt_secret").read_text()
    assert Settings.from_env().jwt_secret == settings.jwt_secret


def test_short_persisted_secret_is_replaced(tmp_path, monkeypatch):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    (tmp_path / ".jwt_secret").write_text("short")

    settings = Settings(jwt_secret=None)

    assert len(settings.jwt_secret) >= 32
    assert (tmp_path / ".jwt_secret").read_text() == settings.jwt_secret


def test_explicit_jwt_secret_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))

    settings = Settings(jwt_secret="configured-secret-configured-secret")

    assert settings.jwt_secret == "configured-secret-configured-secret"
    assert not (tmp_path / ".jwt_secret").exists()
