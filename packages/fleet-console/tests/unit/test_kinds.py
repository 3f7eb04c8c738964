import pytest

from fleet_console.kinds import KINDS, RUN_STATES, PollWeight, get_kind_spec
from shared.contracts.dto.resource import ResourceKind, ResourceStatus


def test_every_kind_is_registered():
    assert set(KINDS) == set(ResourceKind)


@pytest.mark.parametrize(
    "key", [ResourceKind.FIREWALL_RULE, "firewall-rule", "firewallRules"]
)
def test_lookup_by_enum_value_or_prop(key):
    assert get_kind_spec(key).kind == ResourceKind.FIREWALL_RULE


def test_unknown_kind():
    with pytest.raises(KeyError):
        get_kind_spec("mailbox")


def test_props_are_unique():
    props = [spec.prop for spec in KINDS.values()]
    assert len(props) == len(set(props))


def test_collection_path():
    spec = get_kind_spec("schema")

    assert spec.required_params == {"host_id", "database_id"}
    assert (
        spec.collection_path({"host_id": "1", "database_id": "4"})
        == "servers/1/databases/4/schemas"
    )
    assert spec.item_path({"host_id": "1", "database_id": "4"}, "9") == (
        "servers/1/databases/4/schemas/9"
    )


def test_collection_path_missing_params():
    spec = get_kind_spec("deployment")
    with pytest.raises(ValueError, match="site_id"):
        spec.collection_path({"host_id": "1"})


def test_collection_path_ignores_extra_params():
    spec = get_kind_spec("database")
    assert spec.collection_path({"host_id": "1", "site_id": "2"}) == "servers/1/databases"


def test_deployment_is_a_live_pipeline_run():
    spec = get_kind_spec("deployment")

    assert spec.states == RUN_STATES
    assert spec.live_output is True
    assert spec.poll_weight == PollWeight.LIVE
    assert spec.channel == "site"
    assert spec.refetch_on_finish == ("deployments",)
    assert not (spec.supports_update or spec.supports_delete or spec.supports_retry)


def test_toggleable_kinds_allow_paused():
    for spec in KINDS.values():
        assert (ResourceStatus.PAUSED in spec.states) == spec.supports_toggle


def test_only_database_users_have_a_secondary_track():
    assert [spec.kind for spec in KINDS.values() if spec.supports_secondary] == [
        ResourceKind.DATABASE_USER
    ]
