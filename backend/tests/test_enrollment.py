import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.cache.client import CacheClient
from app.cache.keys import CYCLE_STATS_KEY, cycle_key
from app.core.errors import CapacityExceeded, Conflict, NotFound, StoreUnavailable
from app.cycles import service
from app.cycles.models import Cycle, Enrollment
from app.cycles.schemas import CyclePatchRequest, EnrollmentPatchRequest
from conftest import bearer_for, make_cycle, make_user


class BrokenRedis:
    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        return _fail


def _seats(session_factory, cycle_id):
    with session_factory() as s:
        return s.get(Cycle, cycle_id).current_students


def _enrollment_count(session_factory, cycle_id):
    with session_factory() as s:
        return s.execute(select(func.count(Enrollment.id)).where(Enrollment.cycle_id == cycle_id)).scalar_one()


def test_last_seat_goes_to_first_enrollee(db, cache, session_factory):
    make_cycle(db, cycle_id=5, max_students=1)
    make_user(db, email="nine@x.com", user_id=9)
    make_user(db, email="ten@x.com", user_id=10)

    enrollment = service.enroll(db, cache, cycle_id=5, user_id=9)
    assert enrollment.user_id == 9
    assert enrollment.payment_status == "pending"

    with pytest.raises(CapacityExceeded):
        service.enroll(db, cache, cycle_id=5, user_id=10)

    assert _seats(session_factory, 5) == 1
    assert _enrollment_count(session_factory, 5) == 1


def test_unlimited_cycle_never_fills(db, cache, session_factory):
    make_cycle(db, cycle_id=1, max_students=None)
    for uid in range(1, 4):
        make_user(db, email=f"u{uid}@x.com", user_id=uid)
        service.enroll(db, cache, cycle_id=1, user_id=uid)

    assert _seats(session_factory, 1) == 3


def test_duplicate_enrollment_conflicts_without_claiming_a_seat(db, cache, session_factory):
    make_cycle(db, cycle_id=2, max_students=10)
    make_user(db, email="nine@x.com", user_id=9)
    service.enroll(db, cache, cycle_id=2, user_id=9)

    with pytest.raises(Conflict) as exc_info:
        service.enroll(db, cache, cycle_id=2, user_id=9)

    assert exc_info.value.detail == "User already enrolled in this cycle"
    assert _seats(session_factory, 2) == 1


def test_missing_cycle_or_user_is_not_found(db, cache, session_factory):
    make_cycle(db, cycle_id=3, max_students=2)
    make_user(db, email="nine@x.com", user_id=9)

    with pytest.raises(NotFound) as missing_cycle:
        service.enroll(db, cache, cycle_id=999, user_id=9)
    with pytest.raises(NotFound) as missing_user:
        service.enroll(db, cache, cycle_id=3, user_id=404)

    assert missing_cycle.value.detail == "Cycle not found"
    assert missing_user.value.detail == "User not found"
    assert _seats(session_factory, 3) == 0


def test_interleaved_enrollments_cannot_overfill(db, cache, session_factory, monkeypatch):
    make_cycle(db, cycle_id=5, max_students=1)
    make_user(db, email="nine@x.com", user_id=9)
    make_user(db, email="ten@x.com", user_id=10)

    real_get_cycle = service._get_cycle
    state = {"raced": False}

    def _get_cycle_then_race(session, cycle_id):
        cycle = real_get_cycle(session, cycle_id)
        if not state["raced"]:
            state["raced"] = True
            # a second request takes the last seat after this one has seen it free
            with session_factory() as other:
                service.enroll(other, cache, cycle_id=cycle_id, user_id=10)
        return cycle

    monkeypatch.setattr(service, "_get_cycle", _get_cycle_then_race)

    with pytest.raises(CapacityExceeded):
        service.enroll(db, cache, cycle_id=5, user_id=9)

    assert _seats(session_factory, 5) == 1
    assert _enrollment_count(session_factory, 5) == 1


def test_store_failure_rolls_back_seat_claim(db, cache, session_factory, monkeypatch):
    make_cycle(db, cycle_id=6, max_students=3)
    make_user(db, email="nine@x.com", user_id=9)

    def _flush_fails(*args, **kwargs):
        raise OperationalError("INSERT INTO enrollments", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "flush", _flush_fails)

    with pytest.raises(StoreUnavailable):
        service.enroll(db, cache, cycle_id=6, user_id=9)

    assert _seats(session_factory, 6) == 0
    assert _enrollment_count(session_factory, 6) == 0
    assert cache.deleted == []


def test_enroll_invalidates_cycle_cache_after_commit(db, cache):
    make_cycle(db, cycle_id=7, max_students=3)
    make_user(db, email="nine@x.com", user_id=9)

    assert service.get_cycle(db, cache, 7).current_students == 0
    assert cycle_key(7) in cache.store

    service.enroll(db, cache, cycle_id=7, user_id=9)

    assert cycle_key(7) in cache.deleted
    assert CYCLE_STATS_KEY in cache.deleted
    assert service.get_cycle(db, cache, 7).current_students == 1


def test_get_cycle_serves_from_cache(db, cache):
    make_cycle(db, cycle_id=8, max_students=3)
    service.get_cycle(db, cache, 8)
    cache.store[cycle_key(8)]["name"] = "Cached name"

    assert service.get_cycle(db, cache, 8).name == "Cached name"


def test_enroll_succeeds_when_redis_is_down(db, session_factory):
    make_cycle(db, cycle_id=9, max_students=2)
    make_user(db, email="nine@x.com", user_id=9)
    broken = CacheClient(BrokenRedis())

    service.enroll(db, broken, cycle_id=9, user_id=9)

    assert _seats(session_factory, 9) == 1
    assert service.get_cycle(db, broken, 9).current_students == 1


def test_remove_enrollment_frees_the_seat(db, cache, session_factory):
    make_cycle(db, cycle_id=5, max_students=1)
    make_user(db, email="nine@x.com", user_id=9)
    make_user(db, email="ten@x.com", user_id=10)
    enrollment = service.enroll(db, cache, cycle_id=5, user_id=9)

    service.remove_enrollment(db, cache, 5, enrollment.id, acting_user_id=1)

    assert _seats(session_factory, 5) == 0
    service.enroll(db, cache, cycle_id=5, user_id=10)
    assert _seats(session_factory, 5) == 1

    with pytest.raises(NotFound):
        service.remove_enrollment(db, cache, 5, enrollment.id, acting_user_id=1)


def test_dropping_an_enrollment_keeps_the_seat(db, cache, session_factory):
    make_cycle(db, cycle_id=4, max_students=2)
    make_user(db, email="nine@x.com", user_id=9)
    enrollment = service.enroll(db, cache, cycle_id=4, user_id=9)

    updated = service.update_enrollment(db, cache, 4, enrollment.id, EnrollmentPatchRequest(status="dropped"))

    assert updated.status == "dropped"
    assert _seats(session_factory, 4) == 1


def test_max_students_cannot_drop_below_enrolled(db, cache, session_factory):
    make_cycle(db, cycle_id=5, max_students=3)
    for uid in (9, 10):
        make_user(db, email=f"u{uid}@x.com", user_id=uid)
        service.enroll(db, cache, cycle_id=5, user_id=uid)

    with pytest.raises(Conflict):
        service.update_cycle(db, cache, 5, CyclePatchRequest(max_students=1), acting_user_id=1)

    cycle = service.update_cycle(db, cache, 5, CyclePatchRequest(max_students=2), acting_user_id=1)
    assert cycle.max_students == 2

    cycle = service.update_cycle(db, cache, 5, CyclePatchRequest(max_students=None), acting_user_id=1)
    assert cycle.max_students is None


def test_delete_cycle_with_enrollments_conflicts(db, cache):
    make_cycle(db, cycle_id=5, max_students=3)
    make_user(db, email="nine@x.com", user_id=9)
    service.enroll(db, cache, cycle_id=5, user_id=9)

    with pytest.raises(Conflict):
        service.delete_cycle(db, cache, 5, acting_user_id=1)


def test_enroll_endpoint(client, db):
    make_cycle(db, cycle_id=5, max_students=1)
    manager = make_user(db, email="m@x.com", role="manager")
    student = make_user(db, email="s@x.com", user_id=9)
    make_user(db, email="t@x.com", user_id=10)

    r = client.post("/api/v1/cycles/5/enroll", json={"user_id": 9}, headers=bearer_for(student))
    assert r.status_code == 403

    r = client.post("/api/v1/cycles/5/enroll", json={"user_id": 9}, headers=bearer_for(manager))
    assert r.status_code == 201, r.text
    assert r.json()["user_id"] == 9

    r = client.post("/api/v1/cycles/5/enroll", json={"user_id": 10}, headers=bearer_for(manager))
    assert r.status_code == 409
    assert r.json() == {"detail": "Cycle is full", "code": "capacity_exceeded"}

    r = client.post("/api/v1/cycles/77/enroll", json={"user_id": 10}, headers=bearer_for(manager))
    assert r.status_code == 404

    r = client.get("/api/v1/cycles/5/students", headers=bearer_for(manager))
    assert [s["email"] for s in r.json()] == ["s@x.com"]
