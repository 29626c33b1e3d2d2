"""Queue and billing repository tests.

Tests for:
- QueueEntryRepository: enqueue positions, service links, queue modes,
  version-checked updates, recent lists, list_between
- BillableEventRepository: append, count_since
"""
from datetime import datetime, timedelta

import pytest

from database.exceptions import (
    ConcurrentModification, EntryNotFound, InvalidTransition, RecordNotFound
)
from database.models import (
    BillableEvent, STATUS_DONE, STATUS_IN_PROGRESS, STATUS_NO_SHOW, STATUS_WAITING
)


@pytest.fixture
def bounded_shop(temp_db):
    return temp_db.shops.create(
        "Bounded", "owner-b", opening_time="09:00", closing_time="18:00",
        queue_mode="bounded_daily",
    )


def at(hour, minute=0, days_ago=0):
    base = datetime.now().replace(hour=hour, minute=minute, second=0, microsecond=0)
    return base - timedelta(days=days_ago)


class TestEnqueue:

    def test_positions_append_per_barber(self, temp_db, shop, barber):
        other = temp_db.barbers.create(shop.id, "Luca")
        a = temp_db.queue_entries.enqueue(shop.id, "A", barber_id=barber.id)
        b = temp_db.queue_entries.enqueue(shop.id, "B", barber_id=barber.id)
        c = temp_db.queue_entries.enqueue(shop.id, "C", barber_id=other.id)

        assert (a.queue_position, b.queue_position, c.queue_position) == (1, 2, 1)
        assert a.status == STATUS_WAITING

    def test_terminal_entries_do_not_hold_positions(self, temp_db, shop, barber):
        """Done and no-show entries are ignored when picking the next position."""
        a = temp_db.queue_entries.enqueue(shop.id, "A", barber_id=barber.id)
        temp_db.queue_entries.update_entry(a.id, a.version, status=STATUS_DONE)

        b = temp_db.queue_entries.enqueue(shop.id, "B", barber_id=barber.id)
        assert b.queue_position == 1

    def test_unassigned_entries_share_a_lane(self, temp_db, shop, barber):
        """Entries without a barber are numbered in their own lane."""
        temp_db.queue_entries.enqueue(shop.id, "A", barber_id=barber.id)
        first = temp_db.queue_entries.enqueue(shop.id, "Walk-in 1")
        second = temp_db.queue_entries.enqueue(shop.id, "Walk-in 2")
        assert (first.queue_position, second.queue_position) == (1, 2)

    def test_links_services(self, temp_db, shop, haircut):
        beard = temp_db.services.create(shop.id, "Beard", 15, 15)
        entry = temp_db.queue_entries.enqueue(
            shop.id, "Alice", service_ids=[haircut.id, beard.id]
        )
        detail = temp_db.queue_entries.get_detail(entry.id)
        assert {s["name"] for s in detail["services"]} == {"Haircut", "Beard"}
        assert detail["total_price"] == 40.0

    def test_requires_client_name(self, temp_db, shop):
        with pytest.raises(ValueError):
            temp_db.queue_entries.enqueue(shop.id, "   ")

    def test_rejects_foreign_barber(self, temp_db, shop):
        other = temp_db.shops.create("Other", "owner-2")
        stranger = temp_db.barbers.create(other.id, "Stranger")
        with pytest.raises(RecordNotFound):
            temp_db.queue_entries.enqueue(shop.id, "Alice", barber_id=stranger.id)

    def test_rejects_unknown_service(self, temp_db, shop):
        with pytest.raises(RecordNotFound):
            temp_db.queue_entries.enqueue(shop.id, "Alice", service_ids=[424242])

    def test_bounded_shop_accepts_during_hours(self, temp_db, bounded_shop):
        entry = temp_db.queue_entries.enqueue(bounded_shop.id, "Alice", now=at(10))
        assert entry.created_at == at(10)

    def test_bounded_shop_rejects_outside_hours(self, temp_db, bounded_shop):
        """A bounded shop refuses new clients after closing time."""
        with pytest.raises(InvalidTransition):
            temp_db.queue_entries.enqueue(bounded_shop.id, "Late", now=at(20))

    def test_bounded_shop_without_hours_rejects(self, temp_db):
        shop = temp_db.shops.create("No hours", "owner-n", queue_mode="bounded_daily")
        with pytest.raises(InvalidTransition):
            temp_db.queue_entries.enqueue(shop.id, "Alice")


class TestUpdateEntry:

    def test_update_bumps_version(self, temp_db, shop):
        entry = temp_db.queue_entries.enqueue(shop.id, "Alice")
        updated = temp_db.queue_entries.update_entry(
            entry.id, entry.version, status=STATUS_IN_PROGRESS
        )
        assert updated.version == entry.version + 1

    def test_stale_version_is_rejected(self, temp_db, shop):
        """A write with an old version raises ConcurrentModification and changes nothing."""
        entry = temp_db.queue_entries.enqueue(shop.id, "Alice")
        temp_db.queue_entries.update_entry(entry.id, entry.version, queue_position=5)

        with pytest.raises(ConcurrentModification):
            temp_db.queue_entries.update_entry(entry.id, entry.version, queue_position=9)
        assert temp_db.queue_entries.get(entry.id).queue_position == 5

    def test_unknown_status_is_rejected(self, temp_db, shop):
        """Status writes are limited to the four queue states."""
        entry = temp_db.queue_entries.enqueue(shop.id, "Alice")
        with pytest.raises(ValueError):
            temp_db.queue_entries.update_entry(entry.id, entry.version, status="cancelled")
        stored = temp_db.queue_entries.get(entry.id)
        assert (stored.status, stored.version) == (STATUS_WAITING, entry.version)

    def test_missing_entry(self, temp_db):
        with pytest.raises(EntryNotFound):
            temp_db.queue_entries.update_entry(99999, 1, status=STATUS_DONE)


class TestQueueViews:

    def test_always_open_shows_non_terminal_entries(self, temp_db, shop, barber):
        """Always-open shops show waiting, in-progress and no-show entries."""
        repo = temp_db.queue_entries
        waiting = repo.enqueue(shop.id, "Waiting", barber_id=barber.id)
        done = repo.enqueue(shop.id, "Done", barber_id=barber.id)
        no_show = repo.enqueue(shop.id, "NoShow", barber_id=barber.id)
        repo.update_entry(done.id, done.version, status=STATUS_DONE)
        repo.update_entry(no_show.id, no_show.version, status=STATUS_NO_SHOW)

        names = [e["client_name"] for e in repo.list_active(shop.id)]
        assert names == ["Waiting", "NoShow"]
        assert waiting.id in [e["id"] for e in repo.list_active(shop.id)]

    def test_active_list_is_ordered_by_position(self, temp_db, shop, barber):
        repo = temp_db.queue_entries
        a = repo.enqueue(shop.id, "A", barber_id=barber.id)
        repo.enqueue(shop.id, "B", barber_id=barber.id)
        repo.update_entry(a.id, a.version, queue_position=7)

        assert [e["client_name"] for e in repo.list_active(shop.id)] == ["B", "A"]

    def test_bounded_daily_shows_today_within_hours(self, temp_db, bounded_shop):
        """Entries created inside today's hours are shown; finished ones from yesterday are not."""
        repo = temp_db.queue_entries
        repo.enqueue(bounded_shop.id, "Today", now=at(10))
        done = repo.enqueue(bounded_shop.id, "Today done", now=at(11))
        repo.update_entry(done.id, done.version, status=STATUS_DONE)
        old = repo.enqueue(bounded_shop.id, "Yesterday", now=at(10, days_ago=1))
        repo.update_entry(old.id, old.version, status=STATUS_DONE)

        names = {e["client_name"] for e in repo.list_active(bounded_shop.id, now=at(12))}
        assert names == {"Today", "Today done"}

    def test_bounded_daily_keeps_previous_day_in_progress(self, temp_db, bounded_shop):
        """An entry left in progress yesterday stays on the board and blocks its barber."""
        barber = temp_db.barbers.create(bounded_shop.id, "Marco")
        repo = temp_db.queue_entries
        left = repo.enqueue(bounded_shop.id, "Left over", barber_id=barber.id,
                            now=at(12, days_ago=1))
        repo.update_entry(left.id, left.version, status=STATUS_IN_PROGRESS)
        repo.enqueue(bounded_shop.id, "Today", barber_id=barber.id, now=at(12))

        board = temp_db.get_queue_board(bounded_shop.id, now=at(13))
        lane = board["barbers"][0]
        assert lane["in_progress"]["client_name"] == "Left over"
        assert [e["client_name"] for e in lane["waiting"]] == ["Today"]

    def test_bounded_daily_keeps_previous_day_waiting(self, temp_db, bounded_shop):
        """A no-show from yesterday that was requeued shows up in today's queue."""
        barber = temp_db.barbers.create(bounded_shop.id, "Marco")
        repo = temp_db.queue_entries
        missed = repo.enqueue(bounded_shop.id, "Missed", barber_id=barber.id,
                              now=at(15, days_ago=1))
        missed = repo.update_entry(missed.id, missed.version, status=STATUS_NO_SHOW)
        repo.update_entry(missed.id, missed.version, status=STATUS_WAITING)

        names = [e["client_name"] for e in repo.list_active(bounded_shop.id, now=at(9, 30))]
        assert names == ["Missed"]

    def test_bounded_daily_hides_previous_day_no_show(self, temp_db, bounded_shop):
        """Yesterday's no-shows stay off today's queue."""
        repo = temp_db.queue_entries
        gone = repo.enqueue(bounded_shop.id, "Gone", now=at(15, days_ago=1))
        repo.update_entry(gone.id, gone.version, status=STATUS_NO_SHOW)
        assert repo.list_active(bounded_shop.id, now=at(10)) == []

    def test_bounded_daily_without_hours_shows_only_pending(self, temp_db, shop):
        """Without opening hours only waiting and in-progress entries are shown."""
        repo = temp_db.queue_entries
        repo.enqueue(shop.id, "Alice")
        done = repo.enqueue(shop.id, "Bob")
        repo.update_entry(done.id, done.version, status=STATUS_DONE)
        temp_db.shops.update_details(shop.id, queue_mode="bounded_daily")

        assert [e["client_name"] for e in repo.list_active(shop.id)] == ["Alice"]

    def test_list_recent_newest_first_with_limit(self, temp_db, shop):
        repo = temp_db.queue_entries
        for i in range(7):
            entry = repo.enqueue(shop.id, f"Client {i}",
                                 now=datetime.now() - timedelta(minutes=10 - i))
            repo.update_entry(entry.id, entry.version, status=STATUS_DONE)

        recent = repo.list_recent(shop.id, STATUS_DONE)
        assert len(recent) == 5
        assert recent[0]["client_name"] == "Client 6"
        assert len(repo.list_recent(shop.id, STATUS_DONE, limit=None)) == 7

    def test_list_between(self, temp_db, shop):
        repo = temp_db.queue_entries
        repo.enqueue(shop.id, "Old", now=datetime.now() - timedelta(days=10))
        repo.enqueue(shop.id, "New")

        rows = repo.list_between(shop.id, datetime.now() - timedelta(days=1),
                                 datetime.now() + timedelta(minutes=1))
        assert [r["client_name"] for r in rows] == ["New"]


class TestBillableEventRepository:

    def test_append_and_count(self, temp_db, shop):
        entry = temp_db.queue_entries.enqueue(shop.id, "Alice")
        event = temp_db.billable_events.append(shop.id, entry.id)

        assert event.queue_entry_id == entry.id
        assert temp_db.billable_events.count_since(shop.id) == 1

    def test_count_since(self, temp_db, shop):
        """Only events at or after the cutoff are counted."""
        temp_db.billable_events.create(
            BillableEvent, shop_id=shop.id,
            created_at=datetime.now() - timedelta(days=40),
        )
        temp_db.billable_events.append(shop.id, None)

        since = datetime.now() - timedelta(days=1)
        assert temp_db.billable_events.count_since(shop.id, since) == 1
        assert temp_db.billable_events.count_since(shop.id) == 2

    def test_counts_are_per_shop(self, temp_db, shop):
        other = temp_db.shops.create("Other", "owner-2")
        temp_db.billable_events.append(other.id, None)
        assert temp_db.billable_events.count_since(shop.id) == 0
