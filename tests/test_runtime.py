import pytest

from sessionkit.config import reset_settings_cache
from sessionkit.service import runtime as runtime_module
from sessionkit.service.runtime import (
    Runtime,
    _mask_url_password,
    get_runtime,
    reset_runtime_for_tests,
)
from sessionkit.storage.memory import MemoryStore
from sessionkit.storage.memory_cache import MemoryTokenCache


def test_get_runtime_returns_singleton():
    assert get_runtime() is get_runtime()


def test_runtime_wires_shared_token_cache(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "")
    runtime = reset_runtime_for_tests()

    assert runtime.cache is None
    assert isinstance(runtime.store, MemoryStore)
    assert isinstance(runtime.revocations.cache, MemoryTokenCache)
    assert runtime.revocations.cache is runtime.refresh_tokens.cache
    assert runtime.auth.identity is runtime.identity
    assert set(runtime.identity.providers) == {"kakao", "google", "github"}
    assert runtime.platforms.store is runtime.store


def test_unreachable_redis_falls_back_in_test_mode(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    runtime = reset_runtime_for_tests()

    assert runtime.cache is None
    assert isinstance(runtime.refresh_tokens.cache, MemoryTokenCache)


def test_missing_redis_is_fatal_outside_test_mode(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("TEST_MODE", "false")
    monkeypatch.setenv("ALLOW_REDIS_FALLBACK_DEV", "false")
    reset_settings_cache()

    with pytest.raises(RuntimeError, match="need Redis"):
        Runtime()


def test_reset_refused_outside_test_mode(monkeypatch):
    monkeypatch.setenv("TEST_MODE", "false")
    before = runtime_module.runtime

    with pytest.raises(RuntimeError, match="TEST_MODE"):
        reset_runtime_for_tests()
    assert runtime_module.runtime is before


@pytest.mark.parametrize(
    "url,expected",
    [
        ("redis://:secret@localhost:6379/0", "redis://:***@localhost:6379/0"),
        ("postgresql://app:pw@db:5432/sessionkit", "postgresql://app:***@db:5432/sessionkit"),
        ("redis://localhost:6379/0", "redis://localhost:6379/0"),
        ("", ""),
        (None, None),
    ],
)
def test_mask_url_password(url, expected):
    assert _mask_url_password(url) == expected
