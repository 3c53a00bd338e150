"""Tests for the ReconcileObjectsUseCase.

These tests use in-memory ports to test the use case in isolation.
"""

import asyncio
import copy
from datetime import timedelta

import pytest

from src.hillstone.api.exceptions import (
    AuthenticationFailure,
    ObjectNotFoundError,
    ReconciliationFailure,
    RequestFailure,
    SyncCancelledError,
    SyncTimeoutError,
)
from src.hillstone.api.normalizer import normalize_object
from src.hillstone.config import ConflictPolicy, SyncSettings
from src.hillstone.sync.adapters.field_mapper import AddressBookMapper
from src.hillstone.sync.domain.entities import (
    AddressBookObject,
    LocalObject,
    ObjectAction,
    OperationType,
    RemoteDetail,
    SyncStatus,
)
from src.hillstone.sync.use_cases.reconcile import ReconcileObjectsUseCase, chunked
from tests.sync.fakes import InMemoryObjectRepository, MockAddressBookAPI, make_object


def build_use_case(api, objects, runs, clock, monotonic=None, **settings):
    settings.setdefault("cleanup_stale", False)
    kwargs = {}
    if monotonic is not None:
        kwargs["monotonic"] = monotonic
    return ReconcileObjectsUseCase(
        api=api,
        objects=objects,
        runs=runs,
        settings=SyncSettings(**settings),
        clock=clock,
        **kwargs,
    )


class TestChunked:
    def test_even_split(self):
        assert list(chunked([1, 2, 3, 4], 2)) == [[1, 2], [3, 4]]

    def test_remainder(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 10)) == []

    def test_size_below_one_is_treated_as_one(self):
        assert list(chunked([1, 2], 0)) == [[1], [2]]


class TestSyncAll:
    """Tests for full reconciliation."""

    @pytest.mark.asyncio
    async def test_end_to_end_single_object(self, objects, runs, clock):
        """A remote object with a top-level ip list lands with detail and one IP row."""
        raw = normalize_object({"name": "web", "ip": ["10.0.0.1/32"]})
        api = MockAddressBookAPI([AddressBookMapper().map_to_entity(raw)])
        use_case = build_use_case(api, objects, runs, clock)

        run = await use_case.sync_all()

        assert run.status is SyncStatus.COMPLETED
        assert run.operation_type is OperationType.FULL_SYNC
        assert run.objects_processed == 1
        assert run.objects_created == 1
        assert run.objects_updated == 0
        assert run.completed_at is not None

        stored = await objects.find_by_name("web")
        assert stored is not None
        assert stored.detail is not None
        assert stored.detail.name == "web"
        assert len(stored.detail.ip_entries) == 1
        entry = stored.detail.ip_entries[0]
        assert entry.ip_address == "10.0.0.1/32"
        assert entry.netmask == "255.255.255.255"

    @pytest.mark.asyncio
    async def test_second_sync_updates_without_duplicates(self, objects, runs, clock):
        """Re-running with unchanged remote data updates every object and creates none."""
        api = MockAddressBookAPI([make_object("a"), make_object("b"), make_object("c")])
        use_case = build_use_case(api, objects, runs, clock)

        first = await use_case.sync_all()
        clock.advance(minutes=5)
        second = await use_case.sync_all()

        assert (first.objects_created, first.objects_updated) == (3, 0)
        assert (second.objects_created, second.objects_updated) == (0, 3)
        assert sorted(objects.records) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_resync_replaces_ip_entries(self, objects, runs, clock):
        """IP rows are replaced wholesale, never merged."""
        api = MockAddressBookAPI([make_object("db", ips=["10.0.0.1", "10.0.0.2"])])
        use_case = build_use_case(api, objects, runs, clock)
        await use_case.sync_all()

        api.objects = [make_object("db", ips=["10.0.0.3"])]
        await use_case.sync_all()

        stored = await objects.find_by_name("db")
        assert [e.ip_addr for e in stored.detail.ip_entries] == ["10.0.0.3"]

    @pytest.mark.asyncio
    async def test_skip_existing_leaves_record_untouched(self, objects, runs, clock):
        """Under skip_existing an existing record is not modified at all."""
        api = MockAddressBookAPI([make_object("web", ips=["10.0.0.1"])])
        await build_use_case(api, objects, runs, clock).sync_all()
        before = copy.deepcopy(objects.records["web"])

        clock.advance(hours=2)
        api.objects = [make_object("web", ips=["192.168.1.1"], is_ipv6=True), make_object("new")]
        use_case = build_use_case(
            api, objects, runs, clock, conflict_resolution=ConflictPolicy.SKIP_EXISTING
        )
        run = await use_case.sync_all()

        assert objects.records["web"] == before
        assert run.objects_processed == 2
        assert run.objects_created == 1
        assert run.objects_updated == 0

    @pytest.mark.asyncio
    async def test_skip_existing_matches_stored_name(self, objects, runs, clock):
        """A padded remote name still finds the stored record and is skipped."""
        api = MockAddressBookAPI([make_object("web", ips=["10.0.0.1"])])
        await build_use_case(api, objects, runs, clock).sync_all()
        before = copy.deepcopy(objects.records["web"])

        clock.advance(hours=2)
        api.objects = [AddressBookObject(name=" web ", detail=RemoteDetail(ip=["10.9.9.9"]))]
        use_case = build_use_case(
            api, objects, runs, clock, conflict_resolution=ConflictPolicy.SKIP_EXISTING
        )
        run = await use_case.sync_all()

        assert objects.records["web"] == before
        assert list(objects.records) == ["web"]
        assert run.objects_processed == 1
        assert run.objects_created == 0

    @pytest.mark.asyncio
    async def test_tagged_name_counts_as_update(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object("web", ips=["10.0.0.1"])])
        use_case = build_use_case(api, objects, runs, clock)
        await use_case.sync_all()

        api.objects = [AddressBookObject(name="<b>web</b>", detail=RemoteDetail(ip=["10.9.9.9"]))]
        run = await use_case.sync_all()

        assert (run.objects_created, run.objects_updated) == (0, 1)
        assert [e.ip_addr for e in objects.records["web"].detail.ip_entries] == ["10.9.9.9"]
        assert run.objects_updated == 0

    @pytest.mark.asyncio
    async def test_invalid_object_does_not_fail_batch(self, objects, runs, clock):
        """A validation failure on one object skips only that object."""
        api = MockAddressBookAPI([
            make_object("one"),
            make_object("two"),
            make_object(""),
            make_object("four"),
            make_object("five"),
        ])
        use_case = build_use_case(api, objects, runs, clock, batch_size=5)

        run = await use_case.sync_all()

        assert run.status is SyncStatus.COMPLETED
        assert run.objects_processed == 4
        assert run.objects_created == 4
        assert run.objects_failed == 1
        assert sorted(objects.records) == ["five", "four", "one", "two"]

    @pytest.mark.asyncio
    async def test_persistence_failure_counted_per_object(self, runs, clock):
        objects = InMemoryObjectRepository(fail_names={"bad"})
        api = MockAddressBookAPI([make_object("good"), make_object("bad")])

        run = await build_use_case(api, objects, runs, clock).sync_all()

        assert run.status is SyncStatus.COMPLETED
        assert run.objects_failed == 1
        assert list(objects.records) == ["good"]

    @pytest.mark.asyncio
    async def test_unexpected_error_skips_only_that_object(self, runs, clock):
        """Any per-object error is counted and the rest of the batch still lands."""

        class BrokenRepository(InMemoryObjectRepository):
            async def create_or_update(self, obj, synced_at):
                if obj.name == "b":
                    raise TypeError("'int' object is not iterable")
                return await super().create_or_update(obj, synced_at)

        objects = BrokenRepository()
        api = MockAddressBookAPI([make_object("a"), make_object("b"), make_object("c")])

        run = await build_use_case(api, objects, runs, clock).sync_all()

        assert run.status is SyncStatus.COMPLETED
        assert run.objects_processed == 2
        assert run.objects_failed == 1
        assert sorted(objects.records) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_task_cancellation_is_not_swallowed(self, runs, clock):

        class CancelledRepository(InMemoryObjectRepository):
            async def create_or_update(self, obj, synced_at):
                raise asyncio.CancelledError()

        api = MockAddressBookAPI([make_object("a"), make_object("b")])
        use_case = build_use_case(api, CancelledRepository(), runs, clock)

        with pytest.raises(asyncio.CancelledError):
            await use_case.sync_all()

        assert runs.runs[0].status is SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_progress_saved_after_each_batch(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object(f"obj-{i}") for i in range(5)])
        use_case = build_use_case(api, objects, runs, clock, batch_size=2)

        await use_case.sync_all()

        assert [c.processed for c in runs.stats_updates] == [2, 4, 5]

    @pytest.mark.asyncio
    async def test_authentication_failure_marks_run_failed(self, objects, runs, clock):
        api = MockAddressBookAPI(
            [make_object("web")],
            auth_error=AuthenticationFailure("Invalid credentials", attempts=3),
        )
        use_case = build_use_case(api, objects, runs, clock)

        with pytest.raises(AuthenticationFailure):
            await use_case.sync_all()

        assert api.list_calls == 0
        run = await runs.latest()
        assert run.status is SyncStatus.FAILED
        assert run.error_message == "Invalid credentials"
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_marks_run_failed(self, objects, runs, clock):
        api = MockAddressBookAPI(list_error=RequestFailure("Bad Request", status_code=400))
        use_case = build_use_case(api, objects, runs, clock)

        with pytest.raises(RequestFailure):
            await use_case.sync_all()

        run = await runs.latest()
        assert run.status is SyncStatus.FAILED
        assert "Bad Request" in run.error_message

    @pytest.mark.asyncio
    async def test_empty_remote_completes(self, objects, runs, clock):
        run = await build_use_case(MockAddressBookAPI([]), objects, runs, clock).sync_all()

        assert run.status is SyncStatus.COMPLETED
        assert run.objects_processed == 0


class TestStaleEviction:
    """Tests for the retention cutoff applied after a full sync."""

    @pytest.mark.asyncio
    async def test_cutoff_is_strict(self, objects, runs, clock):
        cutoff = clock() - timedelta(days=30)
        objects.records["at-cutoff"] = LocalObject(name="at-cutoff", last_synced_at=cutoff)
        objects.records["before-cutoff"] = LocalObject(
            name="before-cutoff", last_synced_at=cutoff - timedelta(microseconds=1)
        )
        objects.records["never-synced"] = LocalObject(name="never-synced", last_synced_at=None)

        use_case = build_use_case(
            MockAddressBookAPI([make_object("fresh")]),
            objects,
            runs,
            clock,
            cleanup_stale=True,
            cleanup_after_days=30,
        )
        run = await use_case.sync_all()

        assert sorted(objects.records) == ["at-cutoff", "fresh"]
        assert run.objects_deleted == 2

    @pytest.mark.asyncio
    async def test_cleanup_disabled_keeps_stale(self, objects, runs, clock):
        objects.records["old"] = LocalObject(name="old", last_synced_at=clock() - timedelta(days=90))

        use_case = build_use_case(MockAddressBookAPI([]), objects, runs, clock, cleanup_stale=False)
        run = await use_case.sync_all()

        assert "old" in objects.records
        assert run.objects_deleted == 0


class TestCancellation:
    """Tests for the between-batch cancellation and timeout checkpoints."""

    @pytest.mark.asyncio
    async def test_cancel_event_stops_before_next_batch(self, objects, runs, clock):
        cancel = asyncio.Event()

        class CancellingRepository(InMemoryObjectRepository):
            async def create_or_update(self, obj, synced_at):
                record = await super().create_or_update(obj, synced_at)
                cancel.set()
                return record

        objects = CancellingRepository()
        api = MockAddressBookAPI([make_object(f"obj-{i}") for i in range(4)])
        use_case = build_use_case(api, objects, runs, clock, batch_size=2)

        with pytest.raises(SyncCancelledError):
            await use_case.sync_all(cancel_event=cancel)

        # The batch in flight finishes, the next one never starts
        assert sorted(objects.records) == ["obj-0", "obj-1"]
        run = await runs.latest()
        assert run.status is SyncStatus.FAILED
        assert run.objects_processed == 2

    @pytest.mark.asyncio
    async def test_timeout_checked_between_batches(self, objects, runs, clock):
        ticks = iter([0.0, 1.0, 500.0, 500.0])
        api = MockAddressBookAPI([make_object(f"obj-{i}") for i in range(4)])
        use_case = build_use_case(
            api, objects, runs, clock, monotonic=lambda: next(ticks), batch_size=2, sync_timeout=300
        )

        with pytest.raises(SyncTimeoutError):
            await use_case.sync_all()

        run = await runs.latest()
        assert run.status is SyncStatus.FAILED
        assert len(objects.records) == 2


class TestSyncSpecific:
    """Tests for single-object reconciliation."""

    @pytest.mark.asyncio
    async def test_creates_object(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object("web", ips=["10.0.0.1"])])
        use_case = build_use_case(api, objects, runs, clock)

        run = await use_case.sync_specific("web")

        assert run.operation_type is OperationType.OBJECT_SYNC
        assert run.status is SyncStatus.COMPLETED
        assert run.objects_created == 1
        assert "web" in objects.records

    @pytest.mark.asyncio
    async def test_not_found_fails_run(self, objects, runs, clock):
        use_case = build_use_case(MockAddressBookAPI([]), objects, runs, clock)

        with pytest.raises(ObjectNotFoundError) as exc:
            await use_case.sync_specific("missing")

        assert exc.value.code == "OBJECT_NOT_FOUND"
        run = await runs.latest()
        assert run.status is SyncStatus.FAILED
        assert run.error_message == "Object 'missing' not found in API"

    @pytest.mark.asyncio
    async def test_lookup_error_propagates(self, objects, runs, clock):
        error = RequestFailure("Server Error", status_code=500)
        api = MockAddressBookAPI([make_object("web")], lookup_error=error)
        use_case = build_use_case(api, objects, runs, clock)

        with pytest.raises(RequestFailure):
            await use_case.sync_specific("web")

        assert (await runs.latest()).status is SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_no_create_refuses_unknown_object(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object("web")])
        use_case = build_use_case(api, objects, runs, clock)

        with pytest.raises(ReconciliationFailure):
            await use_case.sync_specific("web", create=False)

        assert objects.records == {}

    @pytest.mark.asyncio
    async def test_no_create_updates_known_object(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object("web")])
        use_case = build_use_case(api, objects, runs, clock)
        await use_case.sync_specific("web")

        run = await use_case.sync_specific("web", create=False)

        assert run.objects_updated == 1


class TestProcessObject:
    @pytest.mark.asyncio
    async def test_classifies_created_then_updated(self, objects, runs, clock):
        use_case = build_use_case(MockAddressBookAPI(), objects, runs, clock)

        first = await use_case.process_object(make_object("web"), clock())
        second = await use_case.process_object(make_object("web"), clock())

        assert first.action is ObjectAction.CREATED
        assert second.action is ObjectAction.UPDATED


class TestLedgerQueries:
    """Tests for status and statistics queries."""

    @pytest.mark.asyncio
    async def test_last_sync_status_and_running(self, objects, runs, clock):
        use_case = build_use_case(MockAddressBookAPI([make_object("a")]), objects, runs, clock)

        assert await use_case.get_last_sync_status() is None
        assert await use_case.is_sync_running() is False

        await use_case.sync_all()
        last = await use_case.get_last_sync_status()
        assert last.status is SyncStatus.COMPLETED

        await runs.create(OperationType.PARTIAL_SYNC)
        assert await use_case.is_sync_running() is True

    @pytest.mark.asyncio
    async def test_statistics_over_window(self, objects, runs, clock):
        api = MockAddressBookAPI([make_object("a"), make_object("b")])
        use_case = build_use_case(api, objects, runs, clock)

        await use_case.sync_all()
        clock.advance(minutes=10)
        await use_case.sync_all()

        api.list_error = RequestFailure("Bad Request", status_code=400)
        with pytest.raises(RequestFailure):
            await use_case.sync_all()

        stats = await use_case.get_sync_statistics(days=7)

        assert stats.total_syncs == 3
        assert stats.successful_syncs == 2
        assert stats.failed_syncs == 1
        assert stats.total_objects_created == 2
        assert stats.total_objects_updated == 2
        assert stats.last_sync == clock()
        assert stats.average_duration_seconds == 0.0
