import pytest

from sessionkit.service.errors import NotFoundError, ValidationError
from sessionkit.service.platforms import PlatformService


@pytest.fixture
def service(memory_store):
    return PlatformService(memory_store)


@pytest.fixture
def user(memory_store):
    return memory_store.create_user("kakao", "platform-owner")


class TestPlatformService:
    def test_add_and_get(self, service, user):
        added = service.add_platform(user.id, "instagram", "https://instagram.com/a", "a")

        fetched = service.get_platform(user.id, added.id)
        assert fetched.account_name == "a"
        assert fetched.verified is False
        assert service.list_platforms(user.id) == [fetched]

    def test_duplicate_maps_to_validation_error(self, service, user):
        service.add_platform(user.id, "instagram", "https://instagram.com/a")

        with pytest.raises(ValidationError) as excinfo:
            service.add_platform(user.id, "instagram", "https://instagram.com/a")
        assert excinfo.value.status_code == 400
        assert excinfo.value.detail["field"] == "account_url"

    def test_update_collision_maps_to_validation_error(self, service, user):
        service.add_platform(user.id, "instagram", "https://instagram.com/a")
        second = service.add_platform(user.id, "instagram", "https://instagram.com/b")

        with pytest.raises(ValidationError):
            service.update_platform(user.id, second.id, "https://instagram.com/a")

    @pytest.mark.parametrize("operation", ["get", "update", "remove"])
    def test_missing_platform_is_not_found(self, service, user, operation):
        calls = {
            "get": lambda: service.get_platform(user.id, 404),
            "update": lambda: service.update_platform(user.id, 404, "https://x.test"),
            "remove": lambda: service.remove_platform(user.id, 404),
        }

        with pytest.raises(NotFoundError) as excinfo:
            calls[operation]()
        assert excinfo.value.error_code == "not_found"
        assert excinfo.value.detail == {"platform_id": 404}

    def test_foreign_platform_is_not_found(self, service, memory_store, user):
        other = memory_store.create_user("kakao", "someone-else")
        platform = service.add_platform(user.id, "youtube", "https://youtube.com/@a")

        with pytest.raises(NotFoundError):
            service.remove_platform(other.id, platform.id)
        assert service.get_platform(user.id, platform.id) == platform
