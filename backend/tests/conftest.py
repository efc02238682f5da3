"""
Pytest fixtures for kasir backend tests.

Core tests run against MemoryKeyValueStore and an in-memory remote backend;
route tests go through the Flask app over an in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest

from kasir import create_app
from kasir.core import CoreSettings, PosCore
from kasir.extensions import db
from kasir.services.connectivity import StaticReachabilityProbe
from kasir.services.kv_store import MemoryKeyValueStore
from kasir.services.remote_backend import InMemoryRemoteBackend


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REMOTE_API_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def online_remote(app):
    """Swap an in-memory backend and an online probe into the app."""
    remote = InMemoryRemoteBackend()
    probe = StaticReachabilityProbe(online=True)
    saved = (app.extensions.get("kasir.remote"), app.extensions.get("kasir.probe"))
    app.extensions["kasir.remote"] = remote
    app.extensions["kasir.probe"] = probe
    yield remote
    app.extensions["kasir.remote"], app.extensions["kasir.probe"] = saved


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 10, 30, 0))


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def remote():
    return InMemoryRemoteBackend()


@pytest.fixture
def probe():
    return StaticReachabilityProbe(online=True)


@pytest.fixture
def core(store, remote, probe, clock):
    return PosCore(store, settings=CoreSettings(), remote=remote, probe=probe, clock=clock)


@pytest.fixture
def make_product(core):
    """Factory adding a product to the core's catalog."""
    counter = iter(range(1, 10_000))

    def _make(*, name="Kopi Susu", barcode=None, price=10000, cost=6000, stock=5, **extra):
        patch = {
            "name": name,
            "barcode": barcode or f"899{next(counter):09d}",
            "price": price,
            "cost": cost,
            "stock": stock,
        }
        patch.update(extra)
        return core.catalog.add_product(patch)

    return _make
