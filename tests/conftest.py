from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from salonbook.auth import hash_api_key
from salonbook.cache import Cache
from salonbook.database import Base
from salonbook.domain.scheduling.notifications import ChangeNotificationBridge
from salonbook.models import Service, StaffMember, StaffService, Tenant, WorkingHours

# Monday noon UTC; bookings are made for the following Tuesday
NOW = datetime(2030, 1, 7, 12, 0)
TARGET = date(2030, 1, 8)
ADMIN_KEY = "studio-anna-admin-key"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakePubSub:
    def __init__(self, server):
        self.server = server
        self.channels = set()
        self.queue = []
        self.closed = False

    def subscribe(self, *channels):
        self.channels.update(channels)
        self.server.subscribers.append(self)

    def get_message(self, timeout=None):
        if self.queue:
            return self.queue.pop(0)
        return None

    def close(self):
        self.closed = True
        if self in self.server.subscribers:
            self.server.subscribers.remove(self)


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the app makes"""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.published = []
        self.subscribers = []

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def mget(self, keys):
        return [self.store.get(key) for key in keys]

    def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    def publish(self, channel, message):
        self.published.append((channel, message))
        receivers = 0
        for pubsub in self.subscribers:
            if channel in pubsub.channels:
                pubsub.queue.append({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    def pubsub(self, ignore_subscribe_messages=False):
        return FakePubSub(self)


class RecordingBridge(ChangeNotificationBridge):
    """Bridge backed by FakeRedis that also keeps every publish call"""

    def __init__(self, redis_double):
        super().__init__(client_factory=lambda: redis_double)
        self.signals = []

    def publish(self, tenant_id, target_date, event, **details):
        self.signals.append((tenant_id, target_date, event, details))
        return super().publish(tenant_id, target_date, event, **details)

    def events(self):
        return [event for _, _, event, _ in self.signals]


def _redis_down():
    raise ConnectionError("redis is down")


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'salonbook-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def bridge(fake_redis):
    return RecordingBridge(fake_redis)


@pytest.fixture
def redis_cache(fake_redis):
    return Cache(client_factory=lambda: fake_redis)


@pytest.fixture
def no_cache():
    """Cache whose Redis is unreachable: every read is a miss"""
    return Cache(client_factory=_redis_down)


@pytest.fixture
def seed(db):
    """
    One tenant with two staff members working 09:00-17:00 every day.

    Anna does haircuts (30m, 15m grid) and color (60m, 30m grid);
    Bram only does haircuts.
    """
    tenant = Tenant(
        slug="studio-anna",
        name="Studio Anna",
        timezone="UTC",
        admin_api_key_hash=hash_api_key(ADMIN_KEY),
    )
    db.add(tenant)
    db.flush()

    anna = StaffMember(tenant_id=tenant.id, first_name="Anna", last_name="Berg")
    bram = StaffMember(tenant_id=tenant.id, first_name="Bram")
    haircut = Service(
        tenant_id=tenant.id, name="Haircut", duration_minutes=30, slot_interval_minutes=15
    )
    color = Service(tenant_id=tenant.id, name="Color", duration_minutes=60, slot_interval_minutes=30)
    db.add_all([anna, bram, haircut, color])
    db.flush()

    db.add_all(
        [
            StaffService(tenant_id=tenant.id, staff_id=anna.id, service_id=haircut.id),
            StaffService(tenant_id=tenant.id, staff_id=bram.id, service_id=haircut.id),
            StaffService(tenant_id=tenant.id, staff_id=anna.id, service_id=color.id),
        ]
    )
    for staff in (anna, bram):
        for day in range(7):
            db.add(
                WorkingHours(
                    tenant_id=tenant.id,
                    staff_id=staff.id,
                    day_of_week=day,
                    start_time="09:00",
                    end_time="17:00",
                )
            )
    db.commit()

    return SimpleNamespace(
        tenant_id=tenant.id,
        slug=tenant.slug,
        anna_id=anna.id,
        bram_id=bram.id,
        haircut_id=haircut.id,
        color_id=color.id,
    )
