from datetime import UTC, datetime, timedelta

from helpers import make_resource
import pytest

from fleet_console.errors import UnexpectedResponse
from fleet_console.kinds import get_kind_spec
from fleet_console.store import PLACEHOLDER_PREFIX, ResourceCollection
from shared.contracts.dto.resource import ResourceStatus, StatusProbe

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def databases():
    return ResourceCollection(get_kind_spec("database"))


class TestApply:
    def test_newer_ticket_wins(self, databases):
        first, second = databases.next_ticket(), databases.next_ticket()

        assert databases.apply(make_resource(status="installing"), first)
        assert databases.apply(make_resource(status="active"), second)
        assert databases.get("1").status == ResourceStatus.ACTIVE

    def test_older_completion_is_discarded(self, databases):
        # both requests issued, the later one lands first
        older, newer = databases.next_ticket(), databases.next_ticket()

        assert databases.apply(make_resource(status="active"), newer)
        assert not databases.apply(make_resource(status="installing"), older)
        assert databases.get("1").status == ResourceStatus.ACTIVE

    def test_updated_at_beats_ticket_order(self, databases):
        older, newer = databases.next_ticket(), databases.next_ticket()

        databases.apply(make_resource(status="installing", updated_at=T0), newer)
        # issued earlier but observed a later server state
        assert databases.apply(
            make_resource(status="active", updated_at=T0 + timedelta(seconds=5)), older
        )
        assert databases.get("1").status == ResourceStatus.ACTIVE

    def test_stale_updated_at_is_discarded(self, databases):
        databases.apply(
            make_resource(status="active", updated_at=T0 + timedelta(seconds=5)),
            databases.next_ticket(),
        )
        assert not databases.apply(
            make_resource(status="installing", updated_at=T0), databases.next_ticket()
        )

    def test_naive_and_offset_timestamps_compare(self, databases):
        databases.apply(
            make_resource(status="installing", updated_at="2026-03-01T12:00:05Z"),
            databases.next_ticket(),
        )

        assert not databases.apply(
            make_resource(status="pending", updated_at="2026-03-01 12:00:00"),
            databases.next_ticket(),
        )
        assert databases.apply(
            make_resource(status="active", updated_at="2026-03-01 12:00:10"),
            databases.next_ticket(),
        )
        assert databases.get("1").status == ResourceStatus.ACTIVE

    def test_removed_drops_the_resource(self, databases):
        databases.apply(make_resource(status="removing"), databases.next_ticket())
        databases.apply(make_resource(status="removed"), databases.next_ticket())

        assert "1" not in databases
        assert len(databases) == 0

    def test_rejects_states_the_kind_never_uses(self, databases):
        with pytest.raises(UnexpectedResponse):
            databases.apply(make_resource(status="running"), databases.next_ticket())

    def test_rejects_other_kinds(self, databases):
        with pytest.raises(UnexpectedResponse):
            databases.apply(make_resource(kind="site"), databases.next_ticket())


class TestApplyProbe:
    def test_probe_updates_status_and_progress(self, databases):
        databases.apply(make_resource(status="pending", name="shop"), databases.next_ticket())

        probe = StatusProbe.model_validate(
            {"status": "installing", "progress": {"step": 1, "total": 5}}
        )
        assert databases.apply_probe("1", probe, databases.next_ticket())

        resource = databases.get("1")
        assert resource.status == ResourceStatus.INSTALLING
        assert resource.progress.percent == 20  # noqa: PLR2004
        assert resource.name == "shop"

    def test_probe_for_unknown_resource(self, databases):
        probe = StatusProbe(status=ResourceStatus.ACTIVE)
        assert not databases.apply_probe("42", probe, databases.next_ticket())

    def test_inconsistent_probe(self, databases):
        databases.apply(make_resource(status="installing"), databases.next_ticket())

        # failed without an error detail
        with pytest.raises(UnexpectedResponse):
            databases.apply_probe(
                "1", StatusProbe(status=ResourceStatus.FAILED), databases.next_ticket()
            )
        assert databases.get("1").status == ResourceStatus.INSTALLING


class TestReplaceAll:
    def test_missing_rows_are_dropped(self, databases):
        ticket = databases.next_ticket()
        databases.replace_all([make_resource(id="1"), make_resource(id="2")], ticket)

        databases.replace_all([make_resource(id="2")], databases.next_ticket())

        assert [r.id for r in databases] == ["2"]

    def test_rows_updated_after_the_list_request_survive(self, databases):
        list_ticket = databases.next_ticket()
        databases.apply(make_resource(id="3", status="installing"), databases.next_ticket())

        databases.replace_all([make_resource(id="1")], list_ticket)

        assert "3" in databases

    def test_bad_row_leaves_collection_untouched(self, databases):
        databases.replace_all([make_resource(id="1")], databases.next_ticket())

        with pytest.raises(UnexpectedResponse):
            databases.replace_all(
                [make_resource(id="2"), make_resource(id="3", status="success")],
                databases.next_ticket(),
            )
        assert [r.id for r in databases] == ["1"]

    def test_placeholders_survive_a_refetch(self, databases):
        placeholder = databases.add_placeholder("shop", {})
        databases.replace_all([], databases.next_ticket())

        assert placeholder.id in databases


class TestPlaceholders:
    def test_placeholder_is_pending(self, databases):
        placeholder = databases.add_placeholder("shop", {"engine": "mysql"})

        assert placeholder.id.startswith(PLACEHOLDER_PREFIX)
        assert placeholder.status == ResourceStatus.PENDING
        assert databases.is_optimistic(placeholder.id)
        # optimistic rows are never polled
        assert databases.transitional() == []

    def test_resolve_swaps_in_server_resource(self, databases):
        placeholder = databases.add_placeholder("shop", {})
        ticket = databases.next_ticket()

        resource = databases.resolve_placeholder(
            placeholder.id, make_resource(id="7", status="pending", name="shop"), ticket
        )

        assert resource.id == "7"
        assert placeholder.id not in databases
        assert not databases.is_optimistic("7")
        assert [r.id for r in databases.transitional()] == ["7"]

    def test_resolve_keeps_newer_refetch(self, databases):
        placeholder = databases.add_placeholder("shop", {})
        create_ticket = databases.next_ticket()
        # a push refetch landed before the create response
        databases.apply(make_resource(id="7", status="installing"), databases.next_ticket())

        resource = databases.resolve_placeholder(
            placeholder.id, make_resource(id="7", status="pending"), create_ticket
        )

        assert resource.status == ResourceStatus.INSTALLING

    def test_discard(self, databases):
        placeholder = databases.add_placeholder("shop", {})
        assert databases.discard(placeholder.id) == placeholder
        assert len(databases) == 0
