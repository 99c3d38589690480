"""状态历史记录器测试"""

from datetime import UTC, datetime, timedelta

from logitrack.core.history import append_history, build_history_entry
from logitrack.core.models import (
    GeoLocation,
    ProviderTask,
    ServiceType,
    StatusHistoryEntry,
    TaskStatus,
)


def _task(history: list[StatusHistoryEntry]) -> ProviderTask:
    now = datetime.now(UTC)
    return ProviderTask(
        task_id="task-hist-001",
        provider_id="provider-001",
        booking_id="booking-001",
        service_type=ServiceType.DELIVERY,
        status_history=history,
        created_at=now,
        updated_at=now,
    )


class TestBuildHistoryEntry:
    def test_default_note(self):
        task = _task([])
        entry = build_history_entry(task, TaskStatus.ACCEPTED)
        assert entry.status == TaskStatus.ACCEPTED
        assert entry.note == "Status updated to accepted"
        assert entry.location is None

    def test_note_and_location_kept(self):
        task = _task([])
        location = GeoLocation(lat=1.5, lng=2.5, address="Dock 4")
        entry = build_history_entry(
            task, TaskStatus.PICKED_UP, note="Loaded 3 boxes", location=location
        )
        assert entry.note == "Loaded 3 boxes"
        assert entry.location == location

    def test_empty_note_uses_default(self):
        entry = build_history_entry(_task([]), TaskStatus.FAILED, note="")
        assert entry.note == "Status updated to failed"

    def test_timestamp_is_server_time(self):
        fixed = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        entry = build_history_entry(_task([]), TaskStatus.ACCEPTED, now=fixed)
        assert entry.timestamp == fixed

    def test_timestamp_clamped_to_last_entry(self):
        """时钟回拨时不早于上一条目"""
        last = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        task = _task([StatusHistoryEntry(status=TaskStatus.ASSIGNED, timestamp=last)])
        entry = build_history_entry(
            task, TaskStatus.ACCEPTED, now=last - timedelta(seconds=30)
        )
        assert entry.timestamp == last


class TestAppendHistory:
    def test_append_does_not_mutate_task(self):
        first = StatusHistoryEntry(
            status=TaskStatus.ASSIGNED, timestamp=datetime.now(UTC), note="Task assigned"
        )
        task = _task([first])
        entry = build_history_entry(task, TaskStatus.ACCEPTED)

        history = append_history(task, entry)

        assert history == [first, entry]
        assert task.status_history == [first]
