"""Billing and usage tests."""
import json
from datetime import datetime, timedelta

import httpx
import pytest

from business.billing import BillingService, UsagePolicy, month_start
from business.functions_client import FunctionsClient
from database.exceptions import FunctionInvocationError, RecordNotFound
from database.models import BillableEvent


def portal_client(handler):
    return FunctionsClient("https://fn.example.com", api_key="secret",
                           transport=httpx.MockTransport(handler))


class TestUsagePolicy:

    def test_month_start(self):
        """The period starts at midnight on the first of the month."""
        assert month_start(datetime(2024, 5, 17, 13, 45, 9)) == datetime(2024, 5, 1)

    def test_period_start(self):
        """Month windows start on the first; lifetime windows have no start."""
        now = datetime(2024, 5, 17, 13, 45)
        assert UsagePolicy(window="month").period_start(now) == datetime(2024, 5, 1)
        assert UsagePolicy(window="lifetime").period_start(now) is None

    def test_remaining_and_exhausted(self):
        """Remaining credits never go negative."""
        policy = UsagePolicy(allotment=3)
        assert policy.trial_remaining(1) == 2
        assert policy.trial_remaining(5) == 0
        assert policy.is_exhausted(2) is False
        assert policy.is_exhausted(3) is True

    def test_invalid_window(self):
        """Unknown usage windows are rejected."""
        with pytest.raises(ValueError):
            UsagePolicy(window="weekly")


class TestUsageSummary:

    def test_trial_shop(self, temp_db, shop, policy):
        """Trial shops see their remaining credits and no charge."""
        for _ in range(3):
            temp_db.billable_events.append(shop.id, None)

        summary = BillingService(temp_db, policy).usage(shop.id)

        assert summary.is_trial is True
        assert summary.billable_this_month == 3
        assert summary.trial_used == 3
        assert summary.trial_remaining == 97
        assert summary.trial_exhausted is False
        assert summary.estimated_charge == 0.0

    def test_active_shop_is_charged(self, temp_db, shop, policy):
        """Paying shops are charged per completed client."""
        temp_db.shops.set_subscription_status(shop.id, "active")
        for _ in range(10):
            temp_db.billable_events.append(shop.id, None)

        summary = BillingService(temp_db, policy).usage(shop.id)

        assert summary.is_trial is False
        assert summary.trial_exhausted is False
        assert summary.estimated_charge == 2.5
        assert summary.to_dict()["subscription_status"] == "active"

    def test_previous_month_not_counted(self, temp_db, shop, policy):
        """Last month's events only count under the lifetime window."""
        temp_db.billable_events.create(
            BillableEvent, shop_id=shop.id,
            created_at=month_start(datetime.now()) - timedelta(days=2),
        )
        temp_db.billable_events.append(shop.id, None)

        service = BillingService(temp_db, policy)
        assert service.usage(shop.id).billable_this_month == 1
        assert service.trial_used(shop.id) == 1

        lifetime = BillingService(temp_db, UsagePolicy(window="lifetime"))
        assert lifetime.trial_used(shop.id) == 2

    def test_exhausted_trial(self, temp_db, shop):
        """A trial shop at its allotment is reported as exhausted."""
        temp_db.billable_events.append(shop.id, None)
        summary = BillingService(temp_db, UsagePolicy(allotment=1)).usage(shop.id)
        assert summary.trial_exhausted is True
        assert summary.trial_remaining == 0

    def test_missing_shop(self, temp_db, policy):
        """Usage for an unknown shop raises RecordNotFound."""
        with pytest.raises(RecordNotFound):
            BillingService(temp_db, policy).usage(99999)


class TestPortalSession:

    def test_returns_portal_url(self, temp_db, shop, policy):
        """The portal function is called with the shop id and bearer key."""
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["auth"] = request.headers.get("authorization")
            captured["body"] = json.loads(request.read())
            return httpx.Response(200, json={"url": "https://billing.example.com/s/1"})

        service = BillingService(temp_db, policy, functions=portal_client(handler))

        assert service.create_portal_session(shop.id) == "https://billing.example.com/s/1"
        assert captured["path"] == "/create-stripe-portal"
        assert captured["auth"] == "Bearer secret"
        assert captured["body"] == {"shop_id": shop.id}

    def test_sends_customer_id_when_known(self, temp_db, shop, policy):
        """A stored payment customer id is forwarded to the portal function."""
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.read())
            return httpx.Response(200, json={"url": "https://billing.example.com/s/2"})

        temp_db.shops.set_subscription_status(shop.id, "active", stripe_customer_id="cus_9")
        BillingService(temp_db, policy, functions=portal_client(handler)
                       ).create_portal_session(shop.id)

        assert captured["body"] == {"shop_id": shop.id, "customer_id": "cus_9"}

    def test_missing_url(self, temp_db, shop, policy):
        """A reply without a URL is an invocation error."""
        service = BillingService(
            temp_db, policy,
            functions=portal_client(lambda request: httpx.Response(200, json={})),
        )
        with pytest.raises(FunctionInvocationError):
            service.create_portal_session(shop.id)

    def test_not_configured(self, temp_db, shop, policy):
        """Without a functions endpoint the portal cannot be created."""
        with pytest.raises(FunctionInvocationError):
            BillingService(temp_db, policy).create_portal_session(shop.id)
