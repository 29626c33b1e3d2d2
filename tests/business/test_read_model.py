"""Dashboard read model tests."""
from business.queue_lifecycle import QueueLifecycleManager
from business.read_model import DashboardReadModel


class TestReadModel:

    def test_load(self, temp_db, shop, barber, haircut):
        """Loading fills the queue, barbers, services and the monthly counter."""
        temp_db.queue_entries.enqueue(shop.id, "Alice", barber_id=barber.id)
        temp_db.billable_events.append(shop.id, None)

        model = DashboardReadModel(temp_db, shop.id).load()

        assert [e["client_name"] for e in model.queue] == ["Alice"]
        assert [b["name"] for b in model.barbers] == ["Marco"]
        assert [s["name"] for s in model.services] == ["Haircut"]
        assert model.billable_this_month == 1

    def test_queue_changes_trigger_refetch(self, temp_db, shop, barber):
        """A queue insert triggers one full refetch of the queue."""
        model = DashboardReadModel(temp_db, shop.id).load()
        model.attach()
        before = model.refetch_count

        temp_db.queue_entries.enqueue(shop.id, "Alice", barber_id=barber.id)

        assert model.refetch_count == before + 1
        assert [e["client_name"] for e in model.queue] == ["Alice"]

    def test_complete_updates_counter_and_queue(self, temp_db, shop, barber, policy):
        """Completing bumps the billable counter and clears the queue."""
        lifecycle = QueueLifecycleManager(temp_db, policy)
        entry = temp_db.queue_entries.enqueue(shop.id, "Alice", barber_id=barber.id)
        lifecycle.advance(entry.id)

        model = DashboardReadModel(temp_db, shop.id).load()
        model.attach()
        lifecycle.complete(entry.id)

        assert model.billable_this_month == 1
        assert model.queue == []

    def test_barber_and_service_patches(self, temp_db, shop):
        """Barber and service events patch the lists without a refetch."""
        model = DashboardReadModel(temp_db, shop.id).load()
        model.attach()
        refetches = model.refetch_count

        barber = temp_db.barbers.create(shop.id, "Luca")
        service = temp_db.services.create(shop.id, "Shave", 18, 20)
        assert model.barbers == [{"id": barber.id, "name": "Luca", "avatar_url": None}]
        assert model.services == [
            {"id": service.id, "name": "Shave", "price": 18.0, "duration_minutes": 20}
        ]

        temp_db.barbers.delete(barber.id)
        temp_db.services.delete(service.id)
        assert model.barbers == []
        assert model.services == []
        assert model.refetch_count == refetches

    def test_other_shops_are_ignored(self, temp_db, shop):
        """Changes in another shop leave the model untouched."""
        other = temp_db.shops.create("Other", "owner-2")
        model = DashboardReadModel(temp_db, shop.id).load()
        model.attach()

        temp_db.barbers.create(other.id, "Stranger")
        temp_db.queue_entries.enqueue(other.id, "Someone")

        assert model.barbers == []
        assert model.queue == []

    def test_detach(self, temp_db, shop):
        """Detaching removes every subscription and is safe to repeat."""
        model = DashboardReadModel(temp_db, shop.id).load()
        model.detach()
        model.attach()
        model.detach()

        temp_db.barbers.create(shop.id, "Luca")
        assert model.barbers == []
        assert temp_db.feed.subscriptions_for(shop.id) == []
