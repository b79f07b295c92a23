"""Authentication guard, account and user administration tests."""

from datetime import datetime, timedelta, timezone

import jwt

import config


class TestGuard:
    def test_missing_and_malformed_tokens(self, client):
        assert client.get("/auth/me").status_code == 401
        assert client.get("/auth/me", headers={"Authorization": "Token abc"}).status_code == 401
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_expired_token(self, client, make_user):
        user = make_user()
        token = jwt.encode(
            {"sub": str(user["_id"]), "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            config.JWT_SECRET,
            algorithm=config.JWT_ALGORITHM,
        )
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_inactive_or_deleted_principal(self, client, auth, db, make_user):
        inactive = make_user(active=False)
        assert client.get("/auth/me", headers=auth(inactive)).status_code == 401

        gone = make_user()
        db["user"].delete_one({"_id": gone["_id"]})
        assert client.get("/auth/me", headers=auth(gone)).status_code == 401

    def test_role_check(self, client, auth, make_user):
        assert client.get("/admin/users", headers=auth(make_user())).status_code == 403
        assert client.get("/admin/users", headers=auth(make_user(role="admin"))).status_code == 200


class TestAuthEndpoints:
    def test_register_login_me(self, client):
        response = client.post("/auth/register", json={"username": "sam", "email": "Sam@Example.com",
                                                       "password": "pw-123456"})
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "user"
        assert "password_hash" not in response.json()["user"]

        duplicate = client.post("/auth/register", json={"username": "sam", "email": "other@example.com",
                                                        "password": "pw"})
        assert duplicate.status_code == 409

        assert client.post("/auth/login", json={"email": "sam@example.com", "password": "wrong"}).status_code == 401
        response = client.post("/auth/login", json={"email": "sam@example.com", "password": "pw-123456"})
        assert response.status_code == 200
        token = response.json()["token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["email"] == "sam@example.com"

    def test_disabled_account_cannot_log_in(self, client, make_user):
        user = make_user(active=False, password="pw-123456")
        response = client.post("/auth/login", json={"email": user["email"], "password": "pw-123456"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Account is disabled"

    def test_profile_update(self, client, auth, make_user):
        user = make_user(password="old-pass")
        taken = make_user()

        response = client.put("/auth/profile", json={"username": taken["username"], "email": user["email"]},
                              headers=auth(user))
        assert response.status_code == 409

        response = client.put("/auth/profile", json={"username": "renamed", "email": user["email"],
                                                     "currentPassword": "nope", "newPassword": "new-pass"},
                              headers=auth(user))
        assert response.status_code == 400

        response = client.put("/auth/profile", json={"username": "renamed", "email": user["email"],
                                                     "currentPassword": "old-pass", "newPassword": "new-pass"},
                              headers=auth(user))
        assert response.json()["username"] == "renamed"
        login = client.post("/auth/login", json={"email": user["email"], "password": "new-pass"})
        assert login.status_code == 200

    def test_address_update(self, client, auth, make_user):
        user = make_user()
        response = client.put("/auth/address", json={"street": "2 Elm", "city": "Shelbyville",
                                                     "postalCode": "999", "country": "US"}, headers=auth(user))
        assert response.status_code == 200
        assert client.get("/auth/me", headers=auth(user)).json()["address"]["city"] == "Shelbyville"


class TestUserAdministration:
    def test_admin_cannot_lock_themselves_out(self, client, auth, make_user):
        admin = make_user(role="admin")
        uid = str(admin["_id"])

        response = client.put(f"/admin/users/{uid}/role", json={"role": "user"}, headers=auth(admin))
        assert response.status_code == 403
        response = client.put(f"/admin/users/{uid}/status", json={"active": False}, headers=auth(admin))
        assert response.status_code == 403
        assert client.delete(f"/admin/users/{uid}", headers=auth(admin)).status_code == 403
        assert client.get("/auth/me", headers=auth(admin)).json()["role"] == "admin"

    def test_admin_can_manage_other_admins(self, client, auth, make_user):
        admin, peer = make_user(role="admin"), make_user(role="admin")
        pid = str(peer["_id"])

        response = client.put(f"/admin/users/{pid}/role", json={"role": "user"}, headers=auth(admin))
        assert response.json()["role"] == "user"
        response = client.put(f"/admin/users/{pid}/status", json={"active": False}, headers=auth(admin))
        assert response.json()["active"] is False
        assert client.get("/auth/me", headers=auth(peer)).status_code == 401
        assert client.delete(f"/admin/users/{pid}", headers=auth(admin)).status_code == 200
        assert client.get(f"/admin/users/{pid}", headers=auth(admin)).status_code == 404

    def test_invalid_role_and_status(self, client, auth, make_user):
        admin, other = make_user(role="admin"), make_user()
        oid = str(other["_id"])
        assert client.put(f"/admin/users/{oid}/role", json={"role": "root"}, headers=auth(admin)).status_code == 400
        response = client.put(f"/admin/users/{oid}/status", json={"active": "no"}, headers=auth(admin))
        assert response.status_code == 400
