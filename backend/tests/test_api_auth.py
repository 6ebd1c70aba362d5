from datetime import timedelta

from conftest import PASSWORD, auth_headers, create_user

from pharmacy.core.security import create_access_token
from pharmacy.models.sale import SaleCounter
from pharmacy.utils.clock import local_today


def register(client, username="newshop", **overrides):
    body = {
        "username": username,
        "email": f"{username}@example.com",
        "password": "longenough",
        "pharmacy_name": "New Shop Pharmacy",
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


# ==============================================================================
# REGISTER / LOGIN
# ==============================================================================

def test_register_creates_admin_root(client):
    resp = register(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["access_token"]
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "admin"
    assert data["user"]["pharmacy_id"] is None


def test_register_opens_sale_counter(client, db):
    user_id = register(client).json()["user"]["id"]

    counter = db.get(SaleCounter, user_id)
    assert counter is not None
    assert counter.value == 0

    headers = {"Authorization": f"Bearer {create_access_token(subject=str(user_id))}"}
    body = {"name": "Paracetamol 500mg", "category": "Analgesic", "batch_no": "PCM-001", "quantity": 10,
            "price": 2.5, "expiry_date": (local_today() + timedelta(days=90)).isoformat()}
    drug = client.post("/drugs", json=body, headers=headers).json()["drug"]
    sale = client.post("/sales", json={"items": [{"drug_id": drug["id"], "quantity": 1}]}, headers=headers)
    assert sale.json()["sale"]["sale_number"] == "SL0001"

    db.expire_all()
    assert db.get(SaleCounter, user_id).value == 1


def test_register_duplicate_email(client):
    register(client, username="shop1", email="dup@example.com")
    resp = register(client, username="shop2", email="dup@example.com")
    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"


def test_register_short_password(client):
    resp = register(client, password="123")
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_login_with_username_or_email(client, admin):
    by_name = client.post("/auth/login", json={"username": "owner", "password": PASSWORD})
    by_email = client.post("/auth/login", json={"username": "owner@example.com", "password": PASSWORD})

    assert by_name.status_code == 200
    assert by_email.status_code == 200
    assert by_name.json()["user"]["last_login"] is not None
    assert "pharmacy_token" in by_name.cookies


def test_login_wrong_password(client, admin):
    resp = client.post("/auth/login", json={"username": "owner", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "unauthorized", "message": "Invalid credentials"}


def test_login_deactivated_account(client, db):
    create_user(db, "sleepy", is_active=False)
    resp = client.post("/auth/login", json={"username": "sleepy", "password": PASSWORD})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Account is deactivated"


# ==============================================================================
# TOKENS
# ==============================================================================

def test_me(client, admin, admin_headers):
    resp = client.get("/auth/me", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["username"] == "owner"


def test_missing_and_bad_tokens(client):
    assert client.get("/auth/me").status_code == 401
    resp = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_deactivated_user_token_rejected(client, db, admin):
    headers = auth_headers(admin)
    admin.is_active = False
    db.commit()
    assert client.get("/drugs", headers=headers).status_code == 401


def test_cookie_login_then_logout(client, admin):
    client.post("/auth/login", json={"username": "owner", "password": PASSWORD})
    assert client.get("/auth/me").status_code == 200

    assert client.post("/auth/logout").status_code == 200
    client.cookies.clear()
    assert client.get("/auth/me").status_code == 401


# ==============================================================================
# USERS
# ==============================================================================

def test_update_profile_and_uniqueness(client, admin_headers, other_admin):
    resp = client.put("/users/profile", json={"first_name": "Ama", "phone": "0244"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["first_name"] == "Ama"

    resp = client.put("/users/profile", json={"username": "rival"}, headers=admin_headers)
    assert resp.status_code == 409


def test_change_password(client, admin, admin_headers):
    bad = client.put("/users/password", json={"current_password": "wrong", "new_password": "brandnew1"},
                     headers=admin_headers)
    assert bad.status_code == 400

    ok = client.put("/users/password", json={"current_password": PASSWORD, "new_password": "brandnew1"},
                    headers=admin_headers)
    assert ok.status_code == 200
    assert client.post("/auth/login", json={"username": "owner", "password": "brandnew1"}).status_code == 200


def test_preferences_merge(client, admin_headers):
    resp = client.put("/users/preferences", json={"email_reports": True}, headers=admin_headers)
    prefs = resp.json()["preferences"]
    assert prefs["email_reports"] is True
    assert prefs["low_stock_alerts"] is True


def test_admin_adds_staff_to_own_pharmacy(client, admin, admin_headers):
    resp = client.post(
        "/users/staff",
        json={"username": "pharm1", "email": "pharm1@example.com", "password": "longenough", "role": "pharmacist"},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    staff = resp.json()
    assert staff["pharmacy_id"] == admin.id
    assert staff["pharmacy_name"] == admin.pharmacy_name

    listed = client.get("/users/staff", headers=admin_headers).json()
    assert [u["username"] for u in listed] == ["pharm1"]


def test_cashier_cannot_add_staff(client, cashier_headers):
    resp = client.post(
        "/users/staff",
        json={"username": "sneaky", "email": "sneaky@example.com", "password": "longenough"},
        headers=cashier_headers,
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
