"""
API endpoint tests for all routes.
Uses in-memory SQLite + dependency-overridden FastAPI test client.
"""
from datetime import datetime, timedelta

from sqlalchemy import select

from backoffice.models.activity_log import ActivityLog
from backoffice.models.product import UserProductAccess
from backoffice.api.auth import create_access_token


def bearer(profile):
    return {"Authorization": f"Bearer {create_access_token(data={'sub': profile.user_id})}"}


# ===================== HEALTH / ROOT =====================


async def test_root(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "running"


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


# ===================== AUTH =====================


async def test_login_success(unauth_client, seed_data):
    r = await unauth_client.post(
        "/api/auth/login",
        data={"username": "reseller@test.com", "password": "testpass123"},
    )
    assert r.status_code == 200
    assert "access_token" in r.json()


async def test_login_wrong_password(unauth_client, seed_data):
    r = await unauth_client.post(
        "/api/auth/login",
        data={"username": "reseller@test.com", "password": "wrong"},
    )
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"


async def test_me(client):
    r = await client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["role"] == "admin"
    assert r.json()["email"] == "admin@test.com"


async def test_no_token_unauthorized(unauth_client):
    r = await unauth_client.get("/api/users/")
    assert r.status_code == 401


async def test_bad_token_unauthorized(unauth_client):
    r = await unauth_client.get("/api/users/", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


async def test_deactivated_account_blocked(client, unauth_client, seed_data):
    reseller_id = seed_data["other_reseller"].user_id
    r = await client.patch(f"/api/users/{reseller_id}/account-status", json={"account_status": "deactive"})
    assert r.status_code == 200

    r = await unauth_client.post(
        "/api/auth/login",
        data={"username": "other@test.com", "password": "testpass123"},
    )
    assert r.status_code == 403

    r = await unauth_client.get("/api/auth/me", headers=bearer(seed_data["other_reseller"]))
    assert r.status_code == 403


async def test_validation_errors_are_bad_request(client):
    r = await client.patch("/api/invoices/abc/status", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Bad Request"


# ===================== SETTINGS =====================


async def test_default_commission(client):
    r = await client.get("/api/settings/default-commission")
    assert r.json()["commission_rate"] == 12.00

    r = await client.put("/api/settings/default-commission", json={"commission_rate": 14.5})
    assert r.status_code == 200
    assert r.json()["commission_rate"] == 14.5

    r = await client.put("/api/settings/default-commission", json={"commission_rate": 101})
    assert r.status_code == 400


async def test_reseller_settings_defaults_and_update(client):
    r = await client.get("/api/settings/reseller")
    assert r.json() == {
        "max_consumers_per_reseller": None,
        "min_invoice_amount": None,
        "require_reseller_approval": False,
        "allow_reseller_price_override": True,
    }

    r = await client.put("/api/settings/reseller", json={"min_invoice_amount": 100, "require_reseller_approval": True})
    assert r.status_code == 200
    assert r.json()["min_invoice_amount"] == 100.0
    assert r.json()["require_reseller_approval"] is True

    # Clearing a value only touches the fields that were sent
    r = await client.put("/api/settings/reseller", json={"min_invoice_amount": ""})
    assert r.json()["min_invoice_amount"] is None
    assert r.json()["require_reseller_approval"] is True


async def test_reseller_settings_reject_negative(client):
    r = await client.put("/api/settings/reseller", json={"max_consumers_per_reseller": -1})
    assert r.status_code == 400
    r = await client.put("/api/settings/reseller", json={"max_consumers_per_reseller": 2.5})
    assert r.status_code == 400


async def test_settings_admin_only(reseller_client):
    r = await reseller_client.get("/api/settings/reseller")
    assert r.status_code == 403


async def test_my_commission(client, reseller_client, seed_data):
    r = await reseller_client.get("/api/settings/my-commission")
    assert r.json() == {"commission_rate": 12.0, "commission_type": "default"}

    await client.put(f"/api/resellers/{seed_data['reseller'].user_id}/commission", json={"commission_rate": 18})
    r = await reseller_client.get("/api/settings/my-commission")
    assert r.json() == {"commission_rate": 18.0, "commission_type": "custom"}


# ===================== OFFERS =====================


async def test_offer_crud(client):
    r = await client.post("/api/offers/", json={
        "name": "Summer",
        "commission_percentage": 20,
        "start_date": "2026-06-01",
        "end_date": "2026-08-31",
    })
    assert r.status_code == 201
    offer_id = r.json()["id"]

    r = await client.get(f"/api/offers/{offer_id}")
    assert r.json()["commission_percentage"] == 20.0

    r = await client.put(f"/api/offers/{offer_id}", json={"commission_percentage": 25, "is_active": False})
    assert r.json()["commission_percentage"] == 25.0
    assert r.json()["is_active"] is False

    r = await client.get("/api/offers/", params={"status": "inactive"})
    assert r.json()["pagination"]["total"] == 1

    r = await client.delete(f"/api/offers/{offer_id}")
    assert r.status_code == 200
    r = await client.get(f"/api/offers/{offer_id}")
    assert r.status_code == 404


async def test_offer_validation(client):
    base = {"name": "Bad", "commission_percentage": 20, "start_date": "2026-06-01", "end_date": "2026-08-31"}

    r = await client.post("/api/offers/", json={**base, "commission_percentage": 120})
    assert r.status_code == 400
    r = await client.post("/api/offers/", json={**base, "end_date": "2026-06-01"})
    assert r.status_code == 400
    r = await client.post("/api/offers/", json={**base, "name": "  "})
    assert r.status_code == 400


async def test_active_offer_lookup(client, reseller_client):
    await client.post("/api/offers/", json={
        "name": "March", "commission_percentage": 20,
        "start_date": "2026-03-01", "end_date": "2026-03-31",
    })

    r = await reseller_client.get("/api/offers/active", params={"on": "2026-03-31"})
    assert r.json()["offer"]["name"] == "March"

    r = await reseller_client.get("/api/offers/active", params={"on": "2026-04-01"})
    assert r.json()["offer"] is None


async def test_offer_admin_only(reseller_client):
    r = await reseller_client.get("/api/offers/")
    assert r.status_code == 403


# ===================== PRODUCTS =====================


async def test_products(client, reseller_client):
    r = await reseller_client.get("/api/products/")
    assert [p["name"] for p in r.json()] == ["Gadget", "Widget"]

    r = await client.post("/api/products/", json={"name": "Doohickey", "price": -1})
    assert r.status_code == 400

    r = await client.post("/api/products/", json={"name": "Doohickey", "price": 12.5})
    assert r.status_code == 201
    assert r.json()["price"] == 12.5

    r = await reseller_client.post("/api/products/", json={"name": "Nope", "price": 1})
    assert r.status_code == 403


# ===================== USERS =====================


async def test_create_user_sends_welcome(client, outbox):
    r = await client.post("/api/users/", json={"email": "New@Test.com", "full_name": "New Person"})
    assert r.status_code == 201
    assert r.json()["email"] == "new@test.com"
    assert r.json()["role"] == "user"

    sent = outbox.of_kind("welcome")
    assert len(sent) == 1
    assert sent[0]["to_email"] == "new@test.com"
    assert len(sent[0]["password"]) >= 10


async def test_create_user_duplicate_email(client):
    r = await client.post("/api/users/", json={"email": "consumer@test.com"})
    assert r.status_code == 400


async def test_list_users_by_role(client):
    r = await client.get("/api/users/", params={"role": "reseller"})
    assert r.json()["pagination"]["total"] == 2

    r = await client.get("/api/users/", params={"search": "rita"})
    assert [u["email"] for u in r.json()["data"]] == ["reseller@test.com"]


async def test_user_guards(client, seed_data):
    r = await client.delete(f"/api/users/{seed_data['admin'].user_id}")
    assert r.status_code == 400

    r = await client.patch(
        f"/api/users/{seed_data['admin'].user_id}/account-status", json={"account_status": "deactive"}
    )
    assert r.status_code == 400

    r = await client.patch(
        f"/api/users/{seed_data['reseller'].user_id}/account-status", json={"account_status": "pending"}
    )
    assert r.status_code == 400


async def test_users_admin_only(reseller_client):
    r = await reseller_client.get("/api/users/")
    assert r.status_code == 403


# ===================== RESELLERS =====================


async def test_reseller_pending_when_approval_required(client, unauth_client):
    await client.put("/api/settings/reseller", json={"require_reseller_approval": True})

    r = await client.post("/api/resellers/", json={
        "email": "pending@test.com", "password": "pendingpass1", "full_name": "Pat Pending",
    })
    assert r.status_code == 201
    assert r.json()["account_status"] == "pending"
    reseller_id = r.json()["id"]

    r = await unauth_client.post(
        "/api/auth/login", data={"username": "pending@test.com", "password": "pendingpass1"}
    )
    assert r.status_code == 403

    r = await client.patch(f"/api/users/{reseller_id}/account-status", json={"account_status": "active"})
    assert r.json()["account_status"] == "active"

    r = await unauth_client.post(
        "/api/auth/login", data={"username": "pending@test.com", "password": "pendingpass1"}
    )
    assert r.status_code == 200


async def test_reseller_active_without_approval(client, seed_data):
    r = await client.post("/api/resellers/", json={"email": "fresh@test.com", "commission_rate": 9})
    assert r.status_code == 201
    assert r.json()["account_status"] == "active"
    assert r.json()["commission_rate"] == 9.0
    assert r.json()["referred_by"] == seed_data["admin"].user_id


async def test_reseller_commission_set_and_clear(client, seed_data):
    reseller_id = seed_data["reseller"].user_id

    r = await client.put(f"/api/resellers/{reseller_id}/commission", json={"commission_rate": 15})
    assert r.json()["commission_rate"] == 15.0
    assert r.json()["commission_updated_at"] is not None

    r = await client.put(f"/api/resellers/{reseller_id}/commission", json={"commission_rate": None})
    assert r.json()["commission_rate"] is None

    r = await client.put(f"/api/resellers/{reseller_id}/commission", json={"commission_rate": 150})
    assert r.status_code == 400


async def test_reseller_detail_and_consumers(client, seed_data):
    reseller_id = seed_data["reseller"].user_id

    r = await client.get(f"/api/resellers/{reseller_id}")
    assert r.json()["consumer_count"] == 2

    r = await client.get(f"/api/resellers/{reseller_id}/consumers")
    assert r.json()["pagination"]["total"] == 2

    r = await client.get(f"/api/resellers/{seed_data['consumer'].user_id}")
    assert r.status_code == 404


# ===================== CONSUMERS =====================


async def test_reseller_creates_own_consumer(reseller_client, db_session, seed_data, outbox):
    r = await reseller_client.post("/api/consumers/", json={
        "email": "buyer@test.com",
        "full_name": "Bea Buyer",
        "subscribed_products": [seed_data["widget"].id, "unknown-product"],
    })
    assert r.status_code == 201
    data = r.json()
    assert data["referred_by"] == seed_data["reseller"].user_id
    assert data["trial_expiry"] is not None
    assert data["products_granted"] == 1

    access = await db_session.execute(
        select(UserProductAccess).where(UserProductAccess.user_id == data["id"])
    )
    assert len(access.scalars().all()) == 1
    assert outbox.of_kind("welcome")[0]["role"] == "consumer"


async def test_consumer_email_required(reseller_client):
    r = await reseller_client.post("/api/consumers/", json={"full_name": "No Email"})
    assert r.status_code == 400


async def test_admin_consumer_referrer_must_be_reseller(client, seed_data):
    r = await client.post("/api/consumers/", json={
        "email": "x@test.com", "referred_by": seed_data["consumer"].user_id,
    })
    assert r.status_code == 400

    r = await client.post("/api/consumers/", json={
        "email": "x@test.com", "referred_by": seed_data["other_reseller"].user_id,
    })
    assert r.status_code == 201
    assert r.json()["referred_by"] == seed_data["other_reseller"].user_id


async def test_consumer_limit(client, reseller_client):
    # The seeded reseller already has two consumers
    await client.put("/api/settings/reseller", json={"max_consumers_per_reseller": 2})

    r = await reseller_client.post("/api/consumers/", json={"email": "third@test.com"})
    assert r.status_code == 403
    assert "Maximum consumers" in r.json()["message"]

    await client.put("/api/settings/reseller", json={"max_consumers_per_reseller": 3})
    r = await reseller_client.post("/api/consumers/", json={"email": "third@test.com"})
    assert r.status_code == 201


async def test_reseller_sees_only_own_consumers(reseller_client, seed_data):
    r = await reseller_client.get("/api/consumers/")
    ids = {c["id"] for c in r.json()["data"]}
    assert ids == {seed_data["consumer"].user_id, seed_data["no_email"].user_id}

    r = await reseller_client.get(f"/api/consumers/{seed_data['other_consumer'].user_id}")
    assert r.status_code == 403


async def test_consumer_list_reflects_new_consumer(reseller_client):
    r = await reseller_client.get("/api/consumers/")
    assert r.json()["pagination"]["total"] == 2

    await reseller_client.post("/api/consumers/", json={"email": "fourth@test.com"})
    r = await reseller_client.get("/api/consumers/")
    assert r.json()["pagination"]["total"] == 3


async def test_reseller_cannot_grant_lifetime_access(reseller_client, seed_data):
    r = await reseller_client.put(
        f"/api/consumers/{seed_data['consumer'].user_id}", json={"lifetime_access": True}
    )
    assert r.status_code == 403


async def test_update_consumer(reseller_client, seed_data):
    r = await reseller_client.put(
        f"/api/consumers/{seed_data['consumer'].user_id}", json={"city": "Haifa", "phone": "555"}
    )
    assert r.status_code == 200
    assert r.json()["city"] == "Haifa"


async def test_consumer_account_status_transitions(reseller_client, seed_data, outbox):
    consumer_id = seed_data["consumer"].user_id

    r = await reseller_client.patch(
        f"/api/consumers/{consumer_id}/account-status", json={"account_status": "expired_subscription"}
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["account_status"] == "expired_subscription"
    assert datetime.fromisoformat(data["trial_expiry"]) <= datetime.utcnow()
    assert len(outbox.of_kind("trial_change")) == 1

    r = await reseller_client.patch(
        f"/api/consumers/{consumer_id}/account-status", json={"account_status": "active"}
    )
    data = r.json()["data"]
    assert data["account_status"] == "active"
    assert datetime.fromisoformat(data["trial_expiry"]) > datetime.utcnow() + timedelta(days=29)
    extension = outbox.of_kind("trial_extension")
    assert len(extension) == 1
    assert extension[0]["extension_days"] == 30


async def test_consumer_trial_date_capped(reseller_client, seed_data):
    consumer_id = seed_data["consumer"].user_id
    far = (datetime.utcnow() + timedelta(days=90)).isoformat()

    r = await reseller_client.patch(
        f"/api/consumers/{consumer_id}/account-status",
        json={"account_status": "active", "trial_expiry_date": far},
    )
    trial = datetime.fromisoformat(r.json()["data"]["trial_expiry"])
    assert trial <= datetime.utcnow() + timedelta(days=7)


async def test_consumer_status_rejects_pending(reseller_client, seed_data):
    r = await reseller_client.patch(
        f"/api/consumers/{seed_data['consumer'].user_id}/account-status",
        json={"account_status": "pending"},
    )
    assert r.status_code == 400


async def test_consumer_reset_password(reseller_client, unauth_client, seed_data, outbox):
    r = await reseller_client.post(f"/api/consumers/{seed_data['no_email'].user_id}/reset-password")
    assert r.status_code == 404

    r = await reseller_client.post(f"/api/consumers/{seed_data['consumer'].user_id}/reset-password")
    assert r.status_code == 200
    new_password = outbox.of_kind("password_reset")[0]["new_password"]

    r = await unauth_client.post(
        "/api/auth/login", data={"username": "consumer@test.com", "password": new_password}
    )
    assert r.status_code == 200


async def test_delete_consumer(reseller_client, seed_data):
    consumer_id = seed_data["consumer"].user_id
    r = await reseller_client.delete(f"/api/consumers/{consumer_id}")
    assert r.status_code == 200

    r = await reseller_client.get(f"/api/consumers/{consumer_id}")
    assert r.status_code == 404


# ===================== INVITATIONS =====================


async def test_invitation_signup_flow(client, unauth_client, seed_data, outbox):
    r = await client.post("/api/invitations/invite", json={
        "email": "invitee@test.com",
        "role": "consumer",
        "subscribed_products": [seed_data["gadget"].id],
    })
    assert r.status_code == 201
    token = outbox.of_kind("invite")[0]["token"]
    assert len(token) == 64

    r = await unauth_client.get(f"/api/invitations/validate/{token}")
    assert r.status_code == 200
    assert r.json()["email"] == "invitee@test.com"

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": token, "password": "secret1", "full_name": "Ivy Invitee",
    })
    assert r.status_code == 201
    user = r.json()["user"]
    assert user["role"] == "consumer"
    assert user["referred_by"] is None
    assert user["trial_expiry"] is not None
    assert user["products_granted"] == 1

    r = await unauth_client.get(f"/api/invitations/validate/{token}")
    assert r.status_code == 400

    r = await unauth_client.post(
        "/api/auth/login", data={"username": "invitee@test.com", "password": "secret1"}
    )
    assert r.status_code == 200

    r = await client.post("/api/invoices/", json={
        "receiver_id": user["id"],
        "issue_date": "2026-03-10",
        "due_date": "2026-04-09",
        "items": [{"product_id": seed_data["gadget"].id, "quantity": 1, "unit_price": 30}],
    })
    assert r.status_code == 201
    assert r.json()["reseller_commission_percentage"] is None


async def test_invitation_rejects_existing_and_duplicate(client):
    r = await client.post("/api/invitations/invite", json={"email": "consumer@test.com", "role": "consumer"})
    assert r.status_code == 400

    r = await client.post("/api/invitations/invite", json={"email": "dup@test.com", "role": "user"})
    assert r.status_code == 201
    r = await client.post("/api/invitations/invite", json={"email": "dup@test.com", "role": "user"})
    assert r.status_code == 400

    r = await client.post("/api/invitations/invite", json={"email": "admin2@test.com", "role": "admin"})
    assert r.status_code == 400


async def test_invited_reseller_pending_when_approval_required(client, unauth_client, seed_data, outbox):
    await client.put("/api/settings/reseller", json={"require_reseller_approval": True})
    await client.post("/api/invitations/invite", json={"email": "newres@test.com", "role": "reseller"})
    token = outbox.of_kind("invite")[0]["token"]

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": token, "password": "secret1", "full_name": "Nia Reseller",
    })
    assert r.json()["user"]["account_status"] == "pending"
    assert r.json()["user"]["referred_by"] == seed_data["admin"].user_id


async def test_reseller_invites_reseller(reseller_client, unauth_client, db_session, seed_data, outbox):
    r = await reseller_client.post("/api/invitations/invite-reseller", json={"email": "Sub@Test.com"})
    assert r.status_code == 201
    assert r.json()["role"] == "reseller"
    assert r.json()["email"] == "sub@test.com"
    invite = outbox.of_kind("invite")[0]
    assert invite["role"] == "reseller"

    result = await db_session.execute(
        select(ActivityLog).where(ActivityLog.table_name == "invitations", ActivityLog.target_id == r.json()["id"])
    )
    assert result.scalar_one().actor_id == seed_data["reseller"].user_id

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": invite["token"], "password": "secret1", "full_name": "Sam Sub",
    })
    assert r.status_code == 201
    user = r.json()["user"]
    assert user["role"] == "reseller"
    assert user["referred_by"] == seed_data["reseller"].user_id


async def test_reseller_invite_pending_when_approval_required(client, reseller_client, unauth_client, outbox):
    await client.put("/api/settings/reseller", json={"require_reseller_approval": True})
    await reseller_client.post("/api/invitations/invite-reseller", json={"email": "subpending@test.com"})
    token = outbox.of_kind("invite")[0]["token"]

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": token, "password": "secret1", "full_name": "Pat Pending",
    })
    assert r.json()["user"]["account_status"] == "pending"


async def test_reseller_invite_rules(client, reseller_client, unauth_client, outbox):
    r = await client.post("/api/invitations/invite-reseller", json={"email": "byadmin@test.com"})
    assert r.status_code == 403

    r = await unauth_client.post("/api/invitations/invite-reseller", json={"email": "anon@test.com"})
    assert r.status_code in (401, 403)

    r = await reseller_client.post("/api/invitations/invite-reseller", json={})
    assert r.status_code == 400

    r = await reseller_client.post("/api/invitations/invite-reseller", json={"email": "other@test.com"})
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email already exists"

    r = await reseller_client.post("/api/invitations/invite-reseller", json={"email": "twice@test.com"})
    assert r.status_code == 201
    r = await reseller_client.post("/api/invitations/invite-reseller", json={"email": "twice@test.com"})
    assert r.status_code == 400
    assert r.json()["message"] == "An active invitation already exists for this email"
    assert len(outbox.of_kind("invite")) == 1

async def test_signup_validation(client, unauth_client, outbox):
    await client.post("/api/invitations/invite", json={"email": "short@test.com", "role": "user"})
    token = outbox.of_kind("invite")[0]["token"]

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": token, "password": "12345", "full_name": "Short Pw",
    })
    assert r.status_code == 400

    r = await unauth_client.post("/api/invitations/signup", json={
        "token": "0" * 64, "password": "secret1", "full_name": "Nobody",
    })
    assert r.status_code == 400


# ===================== ACTIVITY LOGS =====================


async def test_activity_logged_for_mutations(client, db_session):
    r = await client.post("/api/offers/", json={
        "name": "Logged", "commission_percentage": 5,
        "start_date": "2026-01-01", "end_date": "2026-01-31",
    }, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
    offer_id = r.json()["id"]

    r = await client.get("/api/activity-logs/", params={"table_name": "offers"})
    assert r.status_code == 200
    rows = r.json()["data"]
    assert len(rows) == 1
    assert rows[0]["target_id"] == offer_id
    assert rows[0]["action_type"] == "create"
    assert rows[0]["actor_role"] == "admin"
    assert rows[0]["ip_address"] == "203.0.113.7"

    result = await db_session.execute(select(ActivityLog).where(ActivityLog.table_name == "offers"))
    assert result.scalars().one().changed_fields["name"] == "Logged"


async def test_activity_logs_admin_only(reseller_client):
    r = await reseller_client.get("/api/activity-logs/")
    assert r.status_code == 403
