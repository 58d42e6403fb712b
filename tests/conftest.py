import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="sessionkit_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("OAUTH_KAKAO_CLIENT_ID", "test-kakao-client")
# Use Redis in tests via SyncRedisCache to avoid async event loop issues
# Falls back to in-memory if Redis is not available (via ALLOW_REDIS_FALLBACK_DEV)
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionkit.config import Settings  # noqa: E402
from sessionkit.service.auth import AuthService  # noqa: E402
from sessionkit.service.errors import UpstreamAuthError  # noqa: E402
from sessionkit.service.identity import IdentityResolver  # noqa: E402
from sessionkit.service.runtime import reset_runtime_for_tests  # noqa: E402
from sessionkit.service.token_stores import RefreshStore, RevocationStore  # noqa: E402
from sessionkit.service.tokens import TokenSigner  # noqa: E402
from sessionkit.storage.memory import MemoryStore  # noqa: E402
from sessionkit.storage.memory_cache import MemoryTokenCache  # noqa: E402
from sessionkit.storage.models import ProviderProfile  # noqa: E402

ALLOWED_REDIRECT = "http://localhost:3000/login/oauth2/code/kakao"


class FakeClock:
    """Manually advanced wall clock shared by the signer and the token cache."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubProvider:
    """Identity provider double that records every upstream call."""

    def __init__(self, name: str = "kakao"):
        self.name = name
        self.profiles: dict[str, ProviderProfile] = {}
        self.calls: list[tuple] = []

    def register(self, code: str, profile: ProviderProfile) -> None:
        self.profiles[code] = profile

    def authorization_url(self, redirect_uri, state=None):
        self.calls.append(("authorization_url", redirect_uri))
        return f"https://idp.test/{self.name}/authorize?redirect_uri={redirect_uri}"

    async def exchange_code(self, code, redirect_uri):
        self.calls.append(("exchange_code", code, redirect_uri))
        if code not in self.profiles:
            raise UpstreamAuthError("identity provider rejected the authorization code")
        return f"provider-token:{code}"

    async def fetch_profile(self, provider_token):
        self.calls.append(("fetch_profile", provider_token))
        return self.profiles[provider_token.split(":", 1)[1]]


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(tmp_path):
    """Create memory store for testing."""
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def token_cache(clock):
    return MemoryTokenCache(clock=clock)


@pytest.fixture
def signer(settings, clock):
    return TokenSigner(settings, clock=clock)


@pytest.fixture
def stub_provider():
    return StubProvider("kakao")


@pytest.fixture
def auth_service(settings, signer, memory_store, token_cache, stub_provider):
    """Create auth service wired to in-memory stores and a stub provider."""
    return AuthService(
        settings,
        signer,
        IdentityResolver(memory_store, {"kakao": stub_provider}),
        RevocationStore(token_cache),
        RefreshStore(token_cache),
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
