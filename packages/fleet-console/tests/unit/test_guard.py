from helpers import make_resource
import httpx
import pytest

from fleet_console.errors import DependencyConflict
from fleet_console.guard import DependencyGuard, describe_dependents
from fleet_console.kinds import get_kind_spec
from shared.contracts.dto.resource import DependentDTO

HOST = {"host_id": "1"}
DATABASES = get_kind_spec("database")


def site(id: int, name: str) -> DependentDTO:
    return DependentDTO(id=id, kind="site", name=name)


class TestDescribeDependents:
    def test_lists_dependents_by_name(self):
        message = describe_dependents(
            make_resource(name="shop"), [site(1, "a.com"), site(2, "b.com")]
        )

        assert message == (
            "Cannot uninstall shop. 2 sites currently depend on it: a.com, b.com. "
            "Remove or migrate them first."
        )

    def test_single_dependent(self):
        message = describe_dependents(make_resource(name="shop"), [site(1, "a.com")])
        assert "1 site currently depends on it: a.com." in message

    def test_mixed_kinds(self):
        dependents = [site(1, "a.com"), DependentDTO(id=4, kind="database-user", name="app")]
        message = describe_dependents(make_resource(name="shop"), dependents)
        assert "2 resources currently depend on it: a.com, app." in message

    def test_count_without_names(self):
        message = describe_dependents(make_resource(name="shop"), [], count=3)
        assert message == (
            "Cannot uninstall shop. 3 resources currently depend on it. "
            "Remove or migrate them first."
        )


class TestDependencyGuard:
    @pytest.mark.asyncio
    async def test_no_dependents_passes_without_request(self, api, api_mock):
        route = api_mock.get("/servers/1/databases/1/dependents")

        await DependencyGuard(api).check(make_resource(), DATABASES, HOST)

        assert not route.called

    @pytest.mark.asyncio
    async def test_blocks_with_dependents(self, api, api_mock):
        api_mock.get("/servers/1/databases/1/dependents").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"id": 10, "kind": "site", "name": "a.com"},
                    {"id": 11, "kind": "site", "name": "b.com"},
                ],
            )
        )
        resource = make_resource(name="shop", dependent_count=2)

        with pytest.raises(DependencyConflict) as exc_info:
            await DependencyGuard(api).check(resource, DATABASES, HOST)

        assert exc_info.value.count == 2  # noqa: PLR2004
        assert [d.name for d in exc_info.value.dependents] == ["a.com", "b.com"]
        assert "a.com, b.com" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_still_blocks_when_listing_fails(self, api, api_mock):
        api_mock.get("/servers/1/databases/1/dependents").mock(
            return_value=httpx.Response(500)
        )
        resource = make_resource(name="shop", dependent_count=2)

        with pytest.raises(DependencyConflict) as exc_info:
            await DependencyGuard(api).check(resource, DATABASES, HOST)

        assert exc_info.value.count == 2  # noqa: PLR2004
        assert exc_info.value.dependents == []
