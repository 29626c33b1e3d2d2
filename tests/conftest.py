"""Shared fixtures for the QueueDesk test suite.

Every test gets a fresh temp-file SQLite DatabaseManager (foreign keys on),
plus a small shop with one barber and one service.
"""
import os
import shutil
import tempfile

import pytest

from business.billing import UsagePolicy
from business.queue_lifecycle import QueueLifecycleManager
from database import DatabaseManager


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="queuedesk-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def shop(temp_db):
    return temp_db.shops.create("Fade Factory", "owner-1", address="1 Main St")


@pytest.fixture
def barber(temp_db, shop):
    return temp_db.barbers.create(shop.id, "Marco")


@pytest.fixture
def haircut(temp_db, shop):
    return temp_db.services.create(shop.id, "Haircut", 25, 30)


@pytest.fixture
def policy():
    return UsagePolicy(allotment=100, window="month", price_per_client=0.25)


@pytest.fixture
def lifecycle(temp_db, policy):
    return QueueLifecycleManager(temp_db, policy)
