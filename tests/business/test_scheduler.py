"""Scheduler and daily report tests."""
import asyncio

import pytest

from business.analytics import AnalyticsAggregator
from business.billing import BillingService
from business.scheduler import (
    DAILY_REPORT_JOB_ID, Scheduler, collect_daily_summaries,
    make_daily_report_task, parse_report_time
)
from database.exceptions import StoreUnavailable
from database.models import STATUS_DONE


class TestParseReportTime:

    @pytest.mark.parametrize("value,expected", [
        ("21:00", (21, 0)),
        (" 07:05 ", (7, 5)),
        ("0:0", (0, 0)),
    ])
    def test_valid(self, value, expected):
        """HH:MM strings parse into hour and minute."""
        assert parse_report_time(value) == expected

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "12", None])
    def test_invalid(self, value):
        """Malformed or out-of-range times are rejected."""
        with pytest.raises(ValueError):
            parse_report_time(value)


class TestDailySummaries:

    def test_collects_every_shop(self, temp_db, shop, barber, haircut, policy):
        """Every shop gets a summary, including empty ones."""
        other = temp_db.shops.create("Other", "owner-2")
        entry = temp_db.queue_entries.enqueue(
            shop.id, "Alice", barber_id=barber.id, service_ids=[haircut.id]
        )
        temp_db.queue_entries.update_entry(entry.id, entry.version, status=STATUS_DONE)
        temp_db.billable_events.append(shop.id, entry.id)

        summaries = collect_daily_summaries(
            temp_db, AnalyticsAggregator(temp_db), BillingService(temp_db, policy)
        )

        by_shop = {s["shop_id"]: s for s in summaries}
        assert by_shop[shop.id]["total_revenue"] == 25.0
        assert by_shop[shop.id]["total_customers"] == 1
        assert by_shop[shop.id]["billable_this_month"] == 1
        assert by_shop[shop.id]["trial_remaining"] == 99
        assert by_shop[other.id]["total_customers"] == 0

    def test_failing_shop_is_skipped(self, temp_db, shop, policy):
        """A shop whose report fails is logged and skipped."""
        other = temp_db.shops.create("Other", "owner-2")

        class FlakyBilling(BillingService):
            def usage(self, shop_id):
                if shop_id == other.id:
                    raise StoreUnavailable("down")
                return super().usage(shop_id)

        summaries = collect_daily_summaries(
            temp_db, AnalyticsAggregator(temp_db), FlakyBilling(temp_db, policy)
        )
        assert [s["shop_id"] for s in summaries] == [shop.id]

    def test_report_task_returns_summaries(self, temp_db, shop, policy):
        """The async task returns the collected summaries."""
        task = make_daily_report_task(
            temp_db, AnalyticsAggregator(temp_db), BillingService(temp_db, policy)
        )
        summaries = asyncio.run(task())
        assert summaries[0]["shop_name"] == "Fade Factory"


class TestScheduler:

    def test_schedule_daily_report(self):
        """The daily report is registered with a cron trigger at the configured time."""
        async def job():
            return None

        scheduler = Scheduler()
        scheduler.schedule_daily_report(job, "06:30")

        scheduled = scheduler.get_job(DAILY_REPORT_JOB_ID)
        assert scheduled is not None
        assert scheduled.name == "每日报告"
        assert str(scheduled.trigger.fields[5]) == "6"
        assert str(scheduled.trigger.fields[6]) == "30"

    def test_remove_job(self):
        """Removing a job twice only logs a warning."""
        async def job():
            return None

        scheduler = Scheduler()
        scheduler.add_daily_task(job, task_id="tmp")
        scheduler.remove_job("tmp")
        scheduler.remove_job("tmp")
        assert scheduler.get_job("tmp") is None

    def test_invalid_time_is_rejected(self):
        """An invalid report time is rejected before scheduling."""
        with pytest.raises(ValueError):
            Scheduler().schedule_daily_report(lambda: None, "25:00")

    def test_stop_before_start(self):
        """Stopping a scheduler that never started is a no-op."""
        Scheduler().stop()
