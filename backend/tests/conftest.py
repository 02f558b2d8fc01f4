import os

# Settings are read at import time; pin a test posture before importing app.*
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.auth.login_guard import login_guard  # noqa: E402
from app.auth.models import User  # noqa: E402
from app.auth.security import Identity, create_access_token, hash_password  # noqa: E402
from app.cache.client import get_cache  # noqa: E402
from app.cycles.models import Cycle, Program  # noqa: E402
from app.db.init_db import init_db  # noqa: E402
from app.db.session import build_engine, get_db  # noqa: E402
from app.leads.models import Lead  # noqa: E402
from app.main import app  # noqa: E402


class FakeCache:
    """In-memory stand-in for CacheClient."""

    def __init__(self):
        self.store: dict = {}
        self.deleted: list[str] = []

    def get_json(self, key):
        return self.store.get(key)

    def set_json(self, key, value, ttl=None):
        self.store[key] = value
        return True

    def delete(self, *keys):
        for key in keys:
            self.deleted.append(key)
            self.store.pop(key, None)
        return True


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'ops.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture(autouse=True)
def _reset_login_guard():
    login_guard.reset()
    yield
    login_guard.reset()


@pytest.fixture
def client(session_factory, cache):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides = {}


def make_user(
    db,
    *,
    email: str,
    password: str | None = None,
    role: str = "student",
    user_id: int | None = None,
    status: str = "active",
) -> User:
    user = User(
        id=user_id,
        email=email.lower(),
        password_hash=hash_password(password) if password else "!unusable",
        first_name="Test",
        last_name="User",
        role=role,
        status=status,
    )
    db.add(user)
    db.commit()
    return user


def make_cycle(
    db,
    *,
    cycle_id: int | None = None,
    max_students: int | None = None,
    current_students: int = 0,
) -> Cycle:
    program = Program(name="Full-stack bootcamp", type="bootcamp", duration_weeks=12)
    db.add(program)
    db.flush()
    cycle = Cycle(
        id=cycle_id,
        program_id=program.id,
        name="Spring cohort",
        start_date=date(2026, 3, 1),
        end_date=date(2026, 6, 1),
        status="planned",
        max_students=max_students,
        current_students=current_students,
    )
    db.add(cycle)
    db.commit()
    return cycle


def make_lead(db, *, phone: str = "+15550001", assigned_to: int | None = None, status: str = "new") -> Lead:
    lead = Lead(
        first_name="Dana",
        last_name="Lee",
        email="dana@example.com",
        phone=phone,
        source="website",
        status=status,
        assigned_to=assigned_to,
    )
    db.add(lead)
    db.commit()
    return lead


def bearer_for(user: User) -> dict[str, str]:
    token = create_access_token(Identity(user_id=user.id, email=user.email, role=user.role))
    return {"Authorization": f"Bearer {token}"}
