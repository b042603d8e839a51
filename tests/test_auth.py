import inspect
from datetime import timedelta

import jwt
import pytest

from library_service import accounts
from library_service.auth import (
    create_access_token,
    decode_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
    require_admin,
    verify_password,
)
from library_service.config import settings
from library_service.errors import PermissionDenied
from library_service.models import Member, User


def _register(client, username, password="secret123", role="member", headers=None):
    return client.post(
        "/auth/register",
        json={"username": username, "password": password, "role": role},
        headers=headers or {},
    )


def _login(client, username, password="secret123"):
    return client.post("/auth/login", json={"username": username, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_password_hashing():
    hashed = hash_password("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)


def test_token_round_trip(db):
    user = User(username="alice", password_hash=hash_password("secret123"), role="admin")
    db.add(user)
    db.commit()

    claims = decode_access_token(create_access_token(user))
    assert claims["sub"] == str(user.id)
    assert claims["username"] == "alice"
    assert claims["role"] == "admin"


def test_expired_token_is_rejected(client, db):
    user = User(username="alice", password_hash=hash_password("secret123"), role="member")
    db.add(user)
    db.commit()

    token = create_access_token(user, expires_minutes=-1)
    assert decode_access_token(token) is None

    response = client.post(
        "/books", json={"title": "Dune", "author": "Frank Herbert"}, headers=_bearer(token)
    )
    assert response.status_code == 403


def test_token_signed_with_other_key_is_rejected(client, db):
    user = User(username="alice", password_hash=hash_password("secret123"), role="admin")
    db.add(user)
    db.commit()

    forged = jwt.encode(
        {"sub": str(user.id), "role": "admin"}, "some-other-key", algorithm=settings.jwt_algorithm
    )
    assert client.get("/users", headers=_bearer(forged)).status_code == 403


def test_initial_setup_flow(client, db):
    """
    Test first-run registration.

    Internal Working:
    1. With no administrator, registration is open
    2. The first admin registers without a token
    3. From then on registration requires an admin token

    Verifies:
    - setup-status flips from true to false
    - a Member record is created alongside the user
    - anonymous and non-admin registrations are refused afterwards
    """
    assert client.get("/auth/setup-status").json() == {"setup_needed": True}

    response = _register(client, "headlibrarian", role="admin")
    assert response.status_code == 201
    assert response.json()["role"] == "admin"
    assert "password" not in response.json()
    assert "password_hash" not in response.json()

    assert client.get("/auth/setup-status").json() == {"setup_needed": False}
    member = db.query(Member).filter(Member.email == "headlibrarian@library.app").first()
    assert member is not None

    assert _register(client, "intruder").status_code == 401

    admin_token = _login(client, "headlibrarian").json()["access_token"]
    response = _register(client, "reader", headers=_bearer(admin_token))
    assert response.status_code == 201
    assert response.json()["role"] == "member"

    reader_token = _login(client, "reader").json()["access_token"]
    assert _register(client, "another", headers=_bearer(reader_token)).status_code == 403


def test_register_validation_and_duplicates(client):
    assert _register(client, "ab", role="admin").status_code == 400
    assert _register(client, "shortpw", password="123", role="admin").status_code == 400
    assert _register(client, "someone", role="superuser").status_code == 400

    assert _register(client, "keeper", role="admin").status_code == 201
    token = _login(client, "keeper").json()["access_token"]
    response = _register(client, "keeper", headers=_bearer(token))
    assert response.status_code == 409


def test_login(client):
    """
    Test login.

    Verifies:
    - Valid credentials return a bearer token and the user
    - Wrong password and unknown user both answer 401
    """
    _register(client, "keeper", role="admin")

    response = _login(client, "keeper")
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["username"] == "keeper"
    assert decode_access_token(data["access_token"])["username"] == "keeper"

    assert _login(client, "keeper", password="wrong-password").status_code == 401
    response = _login(client, "nobody")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_user_management_is_admin_only(client, admin_headers, member_headers):
    assert client.get("/users").status_code == 401
    assert client.get("/users", headers=member_headers).status_code == 403

    response = client.get("/users", headers=admin_headers)
    assert response.status_code == 200
    assert sorted(u["username"] for u in response.json()) == ["admin", "reader"]


def test_last_admin_is_protected(client, admin_headers, db):
    admin = db.query(User).filter(User.username == "admin").one()

    response = client.put(
        f"/users/{admin.id}", json={"username": "admin", "role": "member"}, headers=admin_headers
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Cannot remove the last administrator role"

    with pytest.raises(PermissionDenied) as excinfo:
        accounts.delete_user(db, admin.id)
    assert excinfo.value.message == "Cannot delete the last administrator"


def test_admin_cannot_delete_themselves(client, admin_headers, db):
    """
    Test self-deletion is refused.

    Verifies:
    - 403 with an explicit message, even when other admins exist
    - The account is still there afterwards
    """
    admin = db.query(User).filter(User.username == "admin").one()
    db.add(User(username="deputy", password_hash=hash_password("secret123"), role="admin"))
    db.commit()

    response = client.delete(f"/users/{admin.id}", headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "You cannot delete yourself"

    db.expire_all()
    assert db.query(User).filter(User.username == "admin").count() == 1


def test_update_and_delete_user(client, admin_headers, member_headers, db):
    reader = db.query(User).filter(User.username == "reader").one()

    response = client.put(
        f"/users/{reader.id}",
        json={"username": "head-reader", "role": "admin"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json() == {
        "id": reader.id,
        "username": "head-reader",
        "role": "admin",
        "created_at": response.json()["created_at"],
    }

    response = client.put(
        f"/users/{reader.id}", json={"username": "admin", "role": "admin"}, headers=admin_headers
    )
    assert response.status_code == 409

    assert client.delete(f"/users/{reader.id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/users/{reader.id}", headers=admin_headers).status_code == 404


def test_demoted_admin_loses_access(client, admin_headers, member_headers, db):
    reader = db.query(User).filter(User.username == "reader").one()
    client.put(
        f"/users/{reader.id}", json={"username": "reader", "role": "admin"}, headers=admin_headers
    )
    assert client.get("/users", headers=member_headers).status_code == 200

    client.put(
        f"/users/{reader.id}", json={"username": "reader", "role": "member"}, headers=admin_headers
    )
    assert client.get("/users", headers=member_headers).status_code == 403


def test_change_password(client, admin_headers, member_headers, db):
    """
    Test password changes.

    Verifies:
    - Users change their own password only with the current one
    - Users cannot change someone else's password
    - Admins may reset any password without the current one
    """
    reader = db.query(User).filter(User.username == "reader").one()
    admin = db.query(User).filter(User.username == "admin").one()

    response = client.put(
        f"/users/{reader.id}/password",
        json={"current_password": "wrong", "new_password": "newsecret"},
        headers=member_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Current password is incorrect"

    response = client.put(
        f"/users/{reader.id}/password",
        json={"current_password": "secret123", "new_password": "newsecret"},
        headers=member_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"message": "Password updated successfully"}
    assert _login(client, "reader", "newsecret").status_code == 200

    response = client.put(
        f"/users/{admin.id}/password", json={"new_password": "hijacked"}, headers=member_headers
    )
    assert response.status_code == 403

    response = client.put(
        f"/users/{reader.id}/password", json={"new_password": "resetpass"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert _login(client, "reader", "resetpass").status_code == 200


def test_token_lifetime_follows_settings(db):
    user = User(username="alice", password_hash=hash_password("secret123"), role="member")
    db.add(user)
    db.commit()

    claims = decode_access_token(create_access_token(user))
    lifetime = timedelta(seconds=claims["exp"] - claims["iat"])
    assert lifetime == timedelta(minutes=settings.jwt_expiration_minutes)


def test_auth_dependencies_are_sync():
    """Token checks query the database, so they run in the threadpool like the handlers."""
    for dependency in (get_current_user, get_optional_user, require_admin):
        assert not inspect.iscoroutinefunction(dependency)
