# tests/test_users.py

from __future__ import annotations

PASSWORD = "correct-horse-battery"


def test_login_rejects_bad_password(client, admin_headers) -> None:
    response = client.post("/users/login", data={"email": "admin@marrowlink.org", "password": "wrong-password"})
    assert response.status_code == 401


def test_me_requires_token(client) -> None:
    assert client.get("/users/me").status_code in (401, 403)
    assert client.get("/users/me", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_admin_manages_staff(client, admin_headers) -> None:
    created = client.post(
        "/users",
        data={"email": "nurse@marrowlink.org", "password": PASSWORD, "full_name": "Nurse Joy", "role": "staff"},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text

    duplicate = client.post(
        "/users",
        data={"email": "nurse@marrowlink.org", "password": PASSWORD, "full_name": "Nurse Joy"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    users = client.get("/users", headers=admin_headers).json()
    assert {u["email"] for u in users} == {"admin@marrowlink.org", "nurse@marrowlink.org"}
    assert all("password" not in u for u in users)

    user_id = created.json()["id"]
    client.patch(f"/users/{user_id}", data={"is_active": "false"}, headers=admin_headers)
    login = client.post("/users/login", data={"email": "nurse@marrowlink.org", "password": PASSWORD})
    assert login.status_code == 403


def test_staff_cannot_manage_users(client, staff_headers) -> None:
    response = client.get("/users", headers=staff_headers)
    assert response.status_code == 403


def test_admin_cannot_deactivate_self(client, admin_headers) -> None:
    me = client.get("/users/me", headers=admin_headers).json()
    response = client.patch(f"/users/{me['id']}", data={"is_active": "false"}, headers=admin_headers)
    assert response.status_code == 400
