"""Tests for the queue lifecycle controller."""

import asyncio

import pytest
from bson import ObjectId

from medqueue.database import Database
from medqueue.errors import CapacityError, ConflictError, ValidationError
from medqueue.models.queue import (
    QueueAction,
    QueuePriority,
    QueueStatus,
    TransferRequest,
    TriageContext,
)
from medqueue.services import lifecycle_service
from medqueue.services.lifecycle_service import LifecycleService
from medqueue.services.queue_service import QueueService
from medqueue.services.station_service import StationService


async def _raw_entry(db, entry_id):
    return await db["queue_entries"].find_one({"_id": ObjectId(entry_id)})



class YieldingCollection:
    """Collection wrapper that lets other tasks run before every database call."""

    AWAITED = {"find_one", "find_one_and_update", "update_one", "update_many", "insert_one", "count_documents"}

    def __init__(self, collection):
        self._collection = collection

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if name not in self.AWAITED:
            return attr

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return await attr(*args, **kwargs)

        return call


@pytest.fixture
def interleaved(monkeypatch):
    original = Database.get_collection
    monkeypatch.setattr(
        Database, "get_collection", classmethod(lambda cls, name: YieldingCollection(original(name)))
    )


class TestCallNext:

    @pytest.mark.asyncio
    async def test_second_call_conflicts_while_slot_busy(self, db, make_station, enqueue):
        station = await make_station()
        first = await enqueue(station, "p1")
        second = await enqueue(station, "p2")

        called = await LifecycleService.call_next(station.id, actor_id="nurse-1")
        assert called.entry.id == first.entry.id
        assert called.status == QueueStatus.CALLED
        assert called.entry.called_at is not None

        with pytest.raises(ConflictError):
            await LifecycleService.call_next(station.id, actor_id="nurse-2")

        waiting = await QueueService.get_entry(second.entry.id)
        assert waiting.status == QueueStatus.WAITING
        refreshed = await StationService.get_station(station.id)
        assert refreshed.current_serving_id == first.entry.id

    @pytest.mark.asyncio
    async def test_concurrent_calls_call_one_patient(self, make_station, enqueue, interleaved):
        station = await make_station()
        first = await enqueue(station, "p1")
        second = await enqueue(station, "p2")

        results = await asyncio.gather(
            LifecycleService.call_next(station.id, actor_id="nurse-1"),
            LifecycleService.call_next(station.id, actor_id="nurse-2"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        called = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(called) == 1
        assert called[0].entry.id == first.entry.id

        assert (await QueueService.get_entry(first.entry.id)).status == QueueStatus.CALLED
        assert (await QueueService.get_entry(second.entry.id)).status == QueueStatus.WAITING
        refreshed = await StationService.get_station(station.id)
        assert refreshed.current_serving_id == first.entry.id

    @pytest.mark.asyncio
    async def test_nobody_waiting_returns_none(self, make_station):
        station = await make_station()
        assert await LifecycleService.call_next(station.id) is None

    @pytest.mark.asyncio
    async def test_call_records_actor_in_audit_trail(self, make_station, enqueue):
        station = await make_station()
        await enqueue(station, "p1")

        called = await LifecycleService.call_next(station.id, actor_id="nurse-7")

        assert called.entry.updated_by == "nurse-7"
        assert [event.action for event in called.entry.events] == [
            QueueAction.CHECK_IN, QueueAction.CALL_NEXT
        ]
        assert called.entry.events[-1].actor_id == "nurse-7"
        assert called.entry.events[-1].from_status == QueueStatus.WAITING


class TestCompletion:

    @pytest.mark.asyncio
    async def test_complete_records_metrics_and_history(self, db, make_station, enqueue, backdate):
        station = await make_station()
        view = await enqueue(station, "p1")
        entry_id = view.entry.id

        await LifecycleService.call_next(station.id)
        await LifecycleService.start_serving(entry_id)
        await backdate(entry_id, joined_at=14, served_at=8)

        done = await LifecycleService.complete(entry_id, actor_id="dr-1")

        assert done.status == QueueStatus.COMPLETED
        assert done.position is None
        assert done.entry.wait_time_minutes == 6
        assert done.entry.service_time_minutes == 8

        records = [r async for r in db["queue_history"].find({"entry_id": entry_id})]
        assert len(records) == 1
        assert records[0]["final_status"] == QueueStatus.COMPLETED.value
        assert records[0]["total_time_minutes"] == 14

        refreshed = await StationService.get_station(station.id)
        assert refreshed.served_today == 1
        assert refreshed.current_count == 0
        assert refreshed.current_serving_id is None

    @pytest.mark.asyncio
    async def test_complete_from_waiting_conflicts_without_mutation(self, db, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")
        before = await _raw_entry(db, view.entry.id)

        with pytest.raises(ConflictError):
            await LifecycleService.complete(view.entry.id)

        assert await _raw_entry(db, view.entry.id) == before
        assert await db["queue_history"].count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_start_serving_requires_called_or_recalled(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        with pytest.raises(ConflictError):
            await LifecycleService.start_serving(view.entry.id)


class TestSkipAndRecall:

    @pytest.mark.asyncio
    async def test_skip_recall_serve(self, make_station, enqueue):
        station = await make_station()
        first = await enqueue(station, "p1")
        second = await enqueue(station, "p2")

        await LifecycleService.call_next(station.id)
        skipped = await LifecycleService.skip(first.entry.id)

        assert skipped.status == QueueStatus.SKIPPED
        assert skipped.auto_cancelled is False
        assert skipped.entry.skip_count == 1
        assert skipped.position is None

        refreshed = await StationService.get_station(station.id)
        assert refreshed.current_serving_id is None
        assert (await QueueService.get_entry_status(second.entry.id)).position == 1

        recalled = await LifecycleService.recall(first.entry.id)
        assert recalled.status == QueueStatus.RECALLED
        assert recalled.entry.recalled_at is not None

        serving = await LifecycleService.start_serving(first.entry.id)
        assert serving.status == QueueStatus.SERVING
        refreshed = await StationService.get_station(station.id)
        assert refreshed.current_serving_id == first.entry.id

    @pytest.mark.asyncio
    async def test_skip_requires_called(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        with pytest.raises(ConflictError):
            await LifecycleService.skip(view.entry.id)
        with pytest.raises(ConflictError):
            await LifecycleService.recall(view.entry.id)

    @pytest.mark.asyncio
    async def test_reaching_max_skips_auto_cancels(self, db, make_station, enqueue, monkeypatch):
        monkeypatch.setattr(lifecycle_service.settings, "MAX_SKIP_COUNT", 1)
        station = await make_station()
        first = await enqueue(station, "p1")
        second = await enqueue(station, "p2")

        await LifecycleService.call_next(station.id)
        outcome = await LifecycleService.skip(first.entry.id, actor_id="nurse-1")

        assert outcome.auto_cancelled is True
        assert outcome.status == QueueStatus.CANCELLED
        assert outcome.entry.skip_count == 1
        assert outcome.entry.notes == "Auto-cancelled after 1 skips"
        assert outcome.position is None

        assert (await QueueService.get_entry_status(second.entry.id)).position == 1
        history = await db["queue_history"].find_one({"entry_id": first.entry.id})
        assert history["final_status"] == QueueStatus.CANCELLED.value

        refreshed = await StationService.get_station(station.id)
        assert refreshed.current_count == 1
        assert refreshed.current_serving_id is None

    @pytest.mark.asyncio
    async def test_recalled_entry_cannot_be_skipped_again(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        await LifecycleService.call_next(station.id)
        await LifecycleService.skip(view.entry.id)
        await LifecycleService.recall(view.entry.id)

        with pytest.raises(ConflictError):
            await LifecycleService.skip(view.entry.id)

        entry = await QueueService.get_entry(view.entry.id)
        assert entry.status == QueueStatus.RECALLED
        assert entry.skip_count == 1


class TestHold:

    @pytest.mark.asyncio
    async def test_hold_frees_slot_and_release_restores_called(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")
        await LifecycleService.call_next(station.id)

        held = await LifecycleService.hold(view.entry.id, reason="Stepped out")
        assert held.status == QueueStatus.ON_HOLD
        assert held.entry.held_from == QueueStatus.CALLED
        assert held.position is None
        assert (await StationService.get_station(station.id)).current_serving_id is None

        resumed = await LifecycleService.release_hold(view.entry.id)
        assert resumed.status == QueueStatus.CALLED
        assert (await StationService.get_station(station.id)).current_serving_id == view.entry.id

    @pytest.mark.asyncio
    async def test_release_into_busy_slot_conflicts(self, make_station, enqueue):
        station = await make_station()
        first = await enqueue(station, "p1")
        second = await enqueue(station, "p2")

        await LifecycleService.call_next(station.id)
        await LifecycleService.hold(first.entry.id)
        called = await LifecycleService.call_next(station.id)
        assert called.entry.id == second.entry.id

        with pytest.raises(ConflictError):
            await LifecycleService.release_hold(first.entry.id)

        assert (await QueueService.get_entry(first.entry.id)).status == QueueStatus.ON_HOLD

    @pytest.mark.asyncio
    async def test_waiting_hold_round_trip(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        await LifecycleService.hold(view.entry.id)
        resumed = await LifecycleService.release_hold(view.entry.id)

        assert resumed.status == QueueStatus.WAITING
        assert resumed.position == 1


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_writes_history_and_frees_capacity(self, db, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        cancelled = await LifecycleService.cancel(view.entry.id, reason="Left the hospital")

        assert cancelled.status == QueueStatus.CANCELLED
        assert cancelled.entry.notes == "Left the hospital"
        assert (await StationService.get_station(station.id)).current_count == 0
        assert await db["queue_history"].count_documents({"entry_id": view.entry.id}) == 1

        with pytest.raises(ConflictError):
            await LifecycleService.cancel(view.entry.id)

    @pytest.mark.asyncio
    async def test_patient_can_rejoin_after_cancel(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")
        await LifecycleService.cancel(view.entry.id)

        again = await enqueue(station, "p1")
        assert again.status == QueueStatus.WAITING


class TestTransfer:

    @pytest.mark.asyncio
    async def test_transfer_preserves_priority(self, db, make_station, enqueue):
        source = await make_station()
        target = await make_station(kind="pharmacy", short_name="P")
        view = await enqueue(source, "p1", age=72)

        outcome = await LifecycleService.transfer(
            view.entry.id,
            TransferRequest(target_station_id=target.id, reason="Needs medicines"),
            actor_id="dr-1",
        )

        old, new = outcome.old_entry, outcome.new_entry
        assert old.status == QueueStatus.TRANSFERRED
        assert old.entry.transferred_to == new.entry.id
        assert old.entry.transfer_reason == "Needs medicines"
        assert new.status == QueueStatus.WAITING
        assert new.entry.station_id == target.id
        assert new.entry.transferred_from == old.entry.id
        assert new.entry.priority == QueuePriority.PRIORITY
        assert new.entry.priority_reason == view.entry.priority_reason
        assert new.entry.display_token == "P-001"

        assert (await StationService.get_station(source.id)).current_count == 0
        assert (await StationService.get_station(target.id)).current_count == 1
        history = await db["queue_history"].find_one({"entry_id": old.entry.id})
        assert history["final_status"] == QueueStatus.TRANSFERRED.value

    @pytest.mark.asyncio
    async def test_transfer_with_retriage(self, make_station, enqueue):
        source = await make_station()
        target = await make_station()
        view = await enqueue(source, "p1", age=72)

        outcome = await LifecycleService.transfer(
            view.entry.id,
            TransferRequest(
                target_station_id=target.id,
                reason="Re-assessed",
                retriage=True,
                triage=TriageContext(age=40),
            ),
        )

        assert outcome.new_entry.entry.priority == QueuePriority.NORMAL
        assert outcome.new_entry.entry.priority_reason is None

    @pytest.mark.asyncio
    async def test_transfer_to_same_station_is_rejected(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        with pytest.raises(ValidationError):
            await LifecycleService.transfer(
                view.entry.id, TransferRequest(target_station_id=station.id, reason="x")
            )

    @pytest.mark.asyncio
    async def test_transfer_to_station_where_patient_waits_leaves_source(self, db, make_station, enqueue):
        source = await make_station()
        target = await make_station()
        view = await enqueue(source, "p1")
        await enqueue(target, "p1")
        before = await _raw_entry(db, view.entry.id)

        with pytest.raises(ConflictError):
            await LifecycleService.transfer(
                view.entry.id, TransferRequest(target_station_id=target.id, reason="x")
            )

        assert await _raw_entry(db, view.entry.id) == before
        assert (await StationService.get_station(target.id)).current_count == 1


class TestChangePriority:

    @pytest.mark.asyncio
    async def test_escalation_reorders_waiting_list(self, make_station, enqueue):
        station = await make_station()
        await enqueue(station, "p1")
        late = await enqueue(station, "p2")
        assert late.position == 2

        updated = await LifecycleService.change_priority(
            late.entry.id, "emergency", reason="Collapsed", actor_id="nurse-1"
        )

        assert updated.entry.priority == QueuePriority.EMERGENCY
        assert updated.entry.is_emergency is True
        assert updated.position == 1
        assert updated.status == QueueStatus.WAITING

    @pytest.mark.asyncio
    async def test_unknown_priority_is_rejected(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        with pytest.raises(ValidationError):
            await LifecycleService.change_priority(view.entry.id, "critical")

    @pytest.mark.asyncio
    async def test_terminal_entry_cannot_change(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")
        await LifecycleService.cancel(view.entry.id)

        with pytest.raises(ConflictError):
            await LifecycleService.change_priority(view.entry.id, "urgent")


class TestOccupancy:

    @pytest.mark.asyncio
    async def test_serving_entry_frees_capacity(self, make_station, enqueue):
        station = await make_station(max_capacity=2)
        first = await enqueue(station, "p1")
        await enqueue(station, "p2")

        await LifecycleService.call_next(station.id)
        assert (await StationService.get_station(station.id)).current_count == 2

        await LifecycleService.start_serving(first.entry.id)
        assert (await StationService.get_station(station.id)).current_count == 1

        await enqueue(station, "p3")
        with pytest.raises(CapacityError):
            await enqueue(station, "p4")

    @pytest.mark.asyncio
    async def test_skip_frees_capacity_and_recall_counts_again(self, make_station, enqueue):
        station = await make_station(max_capacity=1)
        view = await enqueue(station, "p1")

        await LifecycleService.call_next(station.id)
        await LifecycleService.skip(view.entry.id)
        assert (await StationService.get_station(station.id)).current_count == 0

        await enqueue(station, "p2")
        await LifecycleService.recall(view.entry.id)
        assert (await StationService.get_station(station.id)).current_count == 2

        with pytest.raises(CapacityError):
            await enqueue(station, "p3")

    @pytest.mark.asyncio
    async def test_hold_leaves_and_release_rejoins_count(self, make_station, enqueue):
        station = await make_station()
        view = await enqueue(station, "p1")

        await LifecycleService.hold(view.entry.id)
        assert (await StationService.get_station(station.id)).current_count == 0

        await LifecycleService.release_hold(view.entry.id)
        assert (await StationService.get_station(station.id)).current_count == 1
