import pytest

from app.auth import service as auth_service
from app.auth.models import RefreshToken, User
from app.auth.schemas import RegisterRequest
from app.auth.security import Identity
from app.core.errors import Conflict, Forbidden, InvalidToken, NotFound
from app.cycles import service as cycles_service
from app.users import service
from app.users.schemas import UserPatchRequest
from conftest import bearer_for, make_cycle, make_lead, make_user


def _identity(user):
    return Identity(user_id=user.id, email=user.email, role=user.role)


def test_list_users_filters_and_paginates(db):
    make_user(db, email="admin@x.com", role="admin")
    make_user(db, email="m@x.com", role="manager")
    for i in range(3):
        make_user(db, email=f"s{i}@x.com")
    make_user(db, email="gone@x.com", status="inactive")

    rows, total = service.list_users(db, role="student", limit=2)
    assert total == 4
    assert len(rows) == 2

    rows, total = service.list_users(db, status="inactive")
    assert [u.email for u in rows] == ["gone@x.com"]


def test_students_see_only_themselves(db):
    alice = make_user(db, email="alice@x.com")
    bob = make_user(db, email="bob@x.com")
    manager = make_user(db, email="m@x.com", role="manager")

    assert service.get_user_for(db, _identity(alice), alice.id).email == "alice@x.com"
    assert service.get_user_for(db, _identity(manager), bob.id).email == "bob@x.com"
    with pytest.raises(Forbidden):
        service.get_user_for(db, _identity(alice), bob.id)
    with pytest.raises(NotFound):
        service.get_user_for(db, _identity(manager), 4040)


def test_update_user_applies_present_keys_only(db):
    manager = make_user(db, email="m@x.com", role="manager")
    student = make_user(db, email="s@x.com")
    student.phone = "+100"
    db.commit()

    updated = service.update_user(db, _identity(manager), student.id, UserPatchRequest(first_name="Grace"))
    assert updated.first_name == "Grace"
    assert updated.phone == "+100"

    updated = service.update_user(db, _identity(manager), student.id, UserPatchRequest(phone=None))
    assert updated.phone is None


def test_user_patch_rejects_null_for_required_field():
    with pytest.raises(ValueError):
        UserPatchRequest(role=None)


def test_managers_cannot_change_roles_or_touch_admins(db):
    admin = make_user(db, email="admin@x.com", role="admin")
    manager = make_user(db, email="m@x.com", role="manager")
    student = make_user(db, email="s@x.com")

    with pytest.raises(Forbidden):
        service.update_user(db, _identity(manager), manager.id, UserPatchRequest(role="admin"))
    with pytest.raises(Forbidden):
        service.update_user(db, _identity(manager), admin.id, UserPatchRequest(first_name="Eve"))

    promoted = service.update_user(db, _identity(admin), student.id, UserPatchRequest(role="manager"))
    assert promoted.role == "manager"


def test_deactivating_a_user_ends_their_sessions(db):
    admin = make_user(db, email="admin@x.com", role="admin")
    resp = auth_service.register(
        db, RegisterRequest(email="s@x.com", password="secret1", first_name="Sam", last_name="Ray")
    )

    service.update_user(db, _identity(admin), resp.user.id, UserPatchRequest(status="inactive"))

    assert db.query(RefreshToken).filter_by(user_id=resp.user.id).count() == 0
    with pytest.raises(InvalidToken):
        auth_service.rotate(db, resp.refresh_token)


def test_cannot_deactivate_or_delete_yourself(db):
    admin = make_user(db, email="admin@x.com", role="admin")

    with pytest.raises(Conflict):
        service.update_user(db, _identity(admin), admin.id, UserPatchRequest(status="inactive"))
    with pytest.raises(Conflict):
        service.delete_user(db, _identity(admin), admin.id)


def test_delete_user_refuses_while_referenced(db, cache, session_factory):
    admin = make_user(db, email="admin@x.com", role="admin")
    student = make_user(db, email="s@x.com")
    rep = make_user(db, email="rep@x.com", role="manager")
    make_cycle(db, cycle_id=5, max_students=3)
    cycles_service.enroll(db, cache, cycle_id=5, user_id=student.id)
    make_lead(db, assigned_to=rep.id)

    with pytest.raises(Conflict) as enrolled:
        service.delete_user(db, _identity(admin), student.id)
    with pytest.raises(Conflict) as assigned:
        service.delete_user(db, _identity(admin), rep.id)

    assert "enrollments" in enrolled.value.detail
    assert "leads" in assigned.value.detail
    with session_factory() as s:
        assert s.get(User, student.id) is not None
        assert s.get(User, rep.id) is not None


def test_delete_unreferenced_user(db, session_factory):
    admin = make_user(db, email="admin@x.com", role="admin")
    resp = auth_service.register(
        db, RegisterRequest(email="s@x.com", password="secret1", first_name="Sam", last_name="Ray")
    )

    service.delete_user(db, _identity(admin), resp.user.id)

    with session_factory() as s:
        assert s.get(User, resp.user.id) is None
        assert s.query(RefreshToken).filter_by(user_id=resp.user.id).count() == 0
    with pytest.raises(NotFound):
        service.delete_user(db, _identity(admin), resp.user.id)


def test_users_endpoints_enforce_roles(client, db):
    admin = make_user(db, email="admin@x.com", role="admin")
    manager = make_user(db, email="m@x.com", role="manager")
    student = make_user(db, email="s@x.com")

    r = client.get("/api/v1/users", headers=bearer_for(student))
    assert r.status_code == 403

    r = client.get("/api/v1/users", params={"role": "student"}, headers=bearer_for(manager))
    assert r.status_code == 200, r.text
    assert [u["email"] for u in r.json()["items"]] == ["s@x.com"]

    r = client.get(f"/api/v1/users/{student.id}", headers=bearer_for(student))
    assert r.status_code == 200
    r = client.get(f"/api/v1/users/{manager.id}", headers=bearer_for(student))
    assert r.status_code == 403

    r = client.patch(f"/api/v1/users/{student.id}", json={"last_name": "Ray"}, headers=bearer_for(manager))
    assert r.status_code == 200, r.text
    assert r.json()["last_name"] == "Ray"

    r = client.patch(f"/api/v1/users/{student.id}", json={"status": None}, headers=bearer_for(manager))
    assert r.status_code == 422

    r = client.delete(f"/api/v1/users/{student.id}", headers=bearer_for(manager))
    assert r.status_code == 403
    r = client.delete(f"/api/v1/users/{student.id}", headers=bearer_for(admin))
    assert r.status_code == 204
