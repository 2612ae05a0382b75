"""Tests for level change requests, notifications and subscription billing."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from conftest import auth_headers, run
from medqbank.core.database import db_helper
from medqbank.models.billing import VoucherCode


def _notifications(client, user):
    return client.get("/api/v1/notifications", headers=user["headers"]).json()


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Смена уровня
# ---------------------------------------------------------------------------

def test_level_change_request_rules(client, student, niveaux):
    r = client.post("/api/v1/level-change-requests", json={"requested_niveau_id": niveaux["PCEM1"]}, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "You are already at this level"

    r = client.post("/api/v1/level-change-requests", json={"requested_niveau_id": 999}, headers=student["headers"])
    assert r.status_code == 404

    r = client.post(
        "/api/v1/level-change-requests",
        json={"requested_niveau_id": niveaux["PCEM2"], "reason": "Passage en deuxième année"},
        headers=student["headers"],
    )
    assert r.status_code == 201
    request = r.json()
    assert request["status"] == "pending"
    assert request["current_niveau_id"] == niveaux["PCEM1"]

    r = client.post("/api/v1/level-change-requests", json={"requested_niveau_id": niveaux["PCEM2"]}, headers=student["headers"])
    assert r.status_code == 409
    assert r.json()["error"] == "A level change request is already pending"

    mine = client.get("/api/v1/level-change-requests/me", headers=student["headers"]).json()
    assert [x["id"] for x in mine] == [request["id"]]


def test_approved_level_change_moves_student(client, admin, student, niveaux):
    request_id = client.post(
        "/api/v1/level-change-requests", json={"requested_niveau_id": niveaux["PCEM2"]}, headers=student["headers"]
    ).json()["id"]

    assert client.get("/api/v1/admin/level-change-requests", headers=student["headers"]).status_code == 403
    pending = client.get("/api/v1/admin/level-change-requests", params={"status": "pending"}, headers=admin["headers"])
    assert [x["id"] for x in pending.json()] == [request_id]

    r = client.post(
        f"/api/v1/admin/level-change-requests/{request_id}/review",
        json={"approve": True}, headers=admin["headers"],
    )
    assert r.status_code == 200
    assert r.json()["status"] == "approved"
    assert r.json()["reviewed_by"] == admin["id"]
    assert r.json()["reviewed_at"] is not None

    me = client.get("/api/v1/auth/me", headers=student["headers"]).json()
    assert me["niveau_id"] == niveaux["PCEM2"]
    assert me["semester_id"] is None

    notifications = _notifications(client, student)
    assert [(n["title"], n["type"]) for n in notifications] == [("Changement de niveau accepté", "success")]
    assert notifications[0]["message"] == "Votre niveau est maintenant PCEM2."

    r = client.post(f"/api/v1/admin/level-change-requests/{request_id}/review", json={"approve": False}, headers=admin["headers"])
    assert r.status_code == 409


def test_rejected_level_change_notifies_with_note(client, admin, student, niveaux):
    request_id = client.post(
        "/api/v1/level-change-requests", json={"requested_niveau_id": niveaux["PCEM2"]}, headers=student["headers"]
    ).json()["id"]
    r = client.post(
        f"/api/v1/admin/level-change-requests/{request_id}/review",
        json={"approve": False, "admin_note": "Justificatif manquant"},
        headers=admin["headers"],
    )
    assert r.json()["status"] == "rejected"
    assert client.get("/api/v1/auth/me", headers=student["headers"]).json()["niveau_id"] == niveaux["PCEM1"]
    assert _notifications(client, student)[0]["message"] == "Justificatif manquant"

    # После решения можно подать новую заявку
    r = client.post("/api/v1/level-change-requests", json={"requested_niveau_id": niveaux["PCEM2"]}, headers=student["headers"])
    assert r.status_code == 201


# ---------------------------------------------------------------------------
# Уведомления
# ---------------------------------------------------------------------------

def test_notification_broadcast_and_read_state(client, admin, student, maintainer, niveaux):
    def send(payload):
        return client.post("/api/v1/admin/notifications", json=payload, headers=admin["headers"])

    assert send({"title": "Maintenance", "message": "Ce soir à 22h"}).json() == {"sent": 3}
    assert send({"title": "Révisions", "message": "Nouveaux QCM", "target": "niveau", "niveau_id": niveaux["PCEM1"]}).json() == {"sent": 1}
    assert send({"title": "Équipe", "message": "Réunion", "target": "role", "role": "maintainer"}).json() == {"sent": 1}
    assert send({"title": "x", "message": "y", "target": "niveau"}).status_code == 400
    assert send({"title": "x", "message": "y", "target": "everyone"}).status_code == 422
    assert client.post("/api/v1/admin/notifications", json={"title": "x", "message": "y"},
                       headers=student["headers"]).status_code == 403

    inbox = _notifications(client, student)
    assert {n["title"] for n in inbox} == {"Maintenance", "Révisions"}
    assert client.get("/api/v1/notifications/unread-count", headers=student["headers"]).json() == {"count": 2}

    first = inbox[0]["id"]
    assert client.post(f"/api/v1/notifications/{first}/read", headers=student["headers"]).json() == {"updated": 1}
    unread = client.get("/api/v1/notifications", params={"unread_only": "true"}, headers=student["headers"]).json()
    assert [n["id"] for n in unread] == [inbox[1]["id"]]

    foreign = _notifications(client, maintainer)[0]["id"]
    assert client.post(f"/api/v1/notifications/{foreign}/read", headers=student["headers"]).status_code == 404

    assert client.post("/api/v1/notifications/read-all", headers=student["headers"]).json() == {"updated": 1}
    assert client.get("/api/v1/notifications/unread-count", headers=student["headers"]).json() == {"count": 0}


# ---------------------------------------------------------------------------
# Цены, купоны, оплаты
# ---------------------------------------------------------------------------

def test_pricing_defaults_and_update(client, admin, student):
    assert client.get("/api/v1/pricing").json() == {"annual_price": 120.0, "semester_price": 70.0, "discount_percent": None}

    payload = {"annual_price": 150, "semester_price": 80, "discount_percent": 10}
    assert client.put("/api/v1/admin/pricing", json=payload, headers=student["headers"]).status_code == 403
    r = client.put("/api/v1/admin/pricing", json=payload, headers=admin["headers"])
    assert r.json() == {"annual_price": 150.0, "semester_price": 80.0, "discount_percent": 10}
    assert client.put("/api/v1/admin/pricing", json={**payload, "annual_price": -1},
                      headers=admin["headers"]).status_code == 422


def _coupon(client, admin, **fields):
    return client.post("/api/v1/admin/coupons", json={"code": "rentree25", "discount_percent": 25, **fields},
                       headers=admin["headers"])


def test_coupon_lifecycle(client, admin, student):
    client.put("/api/v1/admin/pricing", json={"annual_price": 150, "semester_price": 80, "discount_percent": 10},
               headers=admin["headers"])
    r = _coupon(client, admin)
    assert r.status_code == 201
    coupon = r.json()
    assert (coupon["code"], coupon["is_active"], coupon["used_count"]) == ("RENTREE25", True, 0)
    assert _coupon(client, admin, code="RENTREE25 ").status_code == 409

    r = client.post("/api/v1/coupons/check", json={"code": "Rentree25", "plan": "semester"}, headers=student["headers"])
    assert r.json() == {
        "plan": "semester", "base_price": 80.0, "discount_percent": 25, "final_price": 60.0, "coupon_code": "RENTREE25",
    }

    # Общая скидка больше купона
    _coupon(client, admin, code="PETIT5", discount_percent=5)
    r = client.post("/api/v1/coupons/check", json={"code": "petit5"}, headers=student["headers"])
    assert (r.json()["discount_percent"], r.json()["final_price"]) == (10, 135.0)

    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    _coupon(client, admin, code="PERIME", expires_at=yesterday)
    r = client.post("/api/v1/coupons/check", json={"code": "perime"}, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Coupon has expired"

    r = client.post("/api/v1/coupons/check", json={"code": "INCONNU"}, headers=student["headers"])
    assert r.json()["error"] == "Invalid coupon code"

    r = client.delete(f"/api/v1/admin/coupons/{coupon['id']}", headers=admin["headers"])
    assert r.json()["is_active"] is False
    r = client.post("/api/v1/coupons/check", json={"code": "RENTREE25"}, headers=student["headers"])
    assert r.json()["error"] == "Invalid coupon code"

    codes = [c["code"] for c in client.get("/api/v1/admin/coupons", headers=admin["headers"]).json()]
    assert sorted(codes) == ["PERIME", "PETIT5", "RENTREE25"]


def test_payment_approval_activates_and_extends_subscription(client, admin, student):
    _coupon(client, admin, code="UNEFOIS", discount_percent=50, max_uses=1)

    r = client.post("/api/v1/payments", json={"method": "transfer", "plan": "semester", "coupon_code": "unefois",
                                              "reference": "VIR-2026-001"}, headers=student["headers"])
    assert r.status_code == 201
    payment = r.json()
    assert (payment["amount"], payment["status"], payment["coupon_code"]) == (35.0, "pending", "UNEFOIS")

    r = client.post("/api/v1/payments", json={"method": "cash"}, headers=student["headers"])
    assert r.status_code == 409

    pending = client.get("/api/v1/admin/payments", params={"status": "pending"}, headers=admin["headers"]).json()
    assert [p["id"] for p in pending] == [payment["id"]]

    r = client.post(f"/api/v1/admin/payments/{payment['id']}/review", json={"approve": True}, headers=admin["headers"])
    assert r.json()["status"] == "completed"
    assert r.json()["verified_at"] is not None

    me = client.get("/api/v1/auth/me", headers=student["headers"]).json()
    assert me["has_active_subscription"] is True
    first_end = _parse(me["subscription_expires_at"])
    assert abs(first_end - datetime.now(timezone.utc) - timedelta(days=183)) < timedelta(minutes=5)
    assert _notifications(client, student)[0]["title"] == "Abonnement activé"

    # Купон исчерпан
    r = client.post("/api/v1/coupons/check", json={"code": "UNEFOIS"}, headers=student["headers"])
    assert r.json()["error"] == "Coupon usage limit reached"

    # Продление считается от конца текущей подписки
    second = client.post("/api/v1/payments", json={"method": "konnect", "plan": "annual"}, headers=student["headers"]).json()
    assert second["amount"] == 120.0
    client.post(f"/api/v1/admin/payments/{second['id']}/review", json={"approve": True}, headers=admin["headers"])
    me = client.get("/api/v1/auth/me", headers=student["headers"]).json()
    assert abs(_parse(me["subscription_expires_at"]) - first_end - timedelta(days=365)) < timedelta(seconds=5)

    r = client.post(f"/api/v1/admin/payments/{second['id']}/review", json={"approve": False}, headers=admin["headers"])
    assert r.status_code == 409
    assert [p["id"] for p in client.get("/api/v1/payments/me", headers=student["headers"]).json()] == \
        [second["id"], payment["id"]]


def test_rejected_payment(client, admin, student):
    payment = client.post("/api/v1/payments", json={"method": "cash"}, headers=student["headers"]).json()
    r = client.post(
        f"/api/v1/admin/payments/{payment['id']}/review",
        json={"approve": False, "admin_note": "Référence introuvable"},
        headers=admin["headers"],
    )
    assert r.json()["status"] == "rejected"
    assert r.json()["admin_note"] == "Référence introuvable"
    me = client.get("/api/v1/auth/me", headers=student["headers"]).json()
    assert me["has_active_subscription"] is False
    notification = _notifications(client, student)[0]
    assert (notification["title"], notification["message"]) == ("Paiement refusé", "Référence introuvable")

    assert client.post("/api/v1/payments", json={"method": "bitcoin"}, headers=student["headers"]).status_code == 422
    assert client.post("/api/v1/admin/payments/999/review", json={"approve": True},
                       headers=admin["headers"]).status_code == 404


# ---------------------------------------------------------------------------
# Коды активации
# ---------------------------------------------------------------------------

def _vouchers(client, admin, **payload):
    r = client.post("/api/v1/admin/vouchers", json=payload, headers=admin["headers"])
    assert r.status_code == 201
    return r.json()


def test_admin_generates_and_lists_vouchers(client, admin, student):
    assert client.post("/api/v1/admin/vouchers", json={"plan": "annual"}, headers=student["headers"]).status_code == 403
    assert client.post("/api/v1/admin/vouchers", json={"plan": "annual", "count": 101},
                       headers=admin["headers"]).status_code == 422

    annual = _vouchers(client, admin, plan="annual", count=3, expires_in_days=30)
    semester = _vouchers(client, admin, plan="semester")
    assert len(annual) == 3
    assert len({v["code"] for v in annual}) == 3
    assert all(v["code"].startswith("MEDQ-Y-") and len(v["code"]) == 13 for v in annual)
    assert semester[0]["code"].startswith("MEDQ-S-")
    assert annual[0]["created_by"] == admin["id"]
    assert annual[0]["expires_at"] is not None and semester[0]["expires_at"] is None

    listing = client.get("/api/v1/admin/vouchers", params={"plan": "annual", "limit": 2}, headers=admin["headers"]).json()
    assert listing["total"] == 3
    assert len(listing["items"]) == 2
    unused = client.get("/api/v1/admin/vouchers", params={"isUsed": "false"}, headers=admin["headers"]).json()
    assert unused["total"] == 4


def test_voucher_redemption_activates_subscription_once(client, admin, student, make_user):
    code = _vouchers(client, admin, plan="semester")[0]["code"]

    r = client.post("/api/v1/payments", json={"method": "voucher"}, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Voucher code is required"
    r = client.post("/api/v1/payments", json={"method": "voucher", "voucher_code": "MEDQ-S-NOPE00"},
                    headers=student["headers"])
    assert r.json()["error"] == "Invalid voucher code"

    # План берётся из кода, а не из запроса
    r = client.post("/api/v1/payments", json={"method": "voucher", "plan": "annual", "voucher_code": code.lower()},
                    headers=student["headers"])
    assert r.status_code == 201
    payment = r.json()
    assert (payment["amount"], payment["status"], payment["plan"]) == (0.0, "completed", "semester")
    assert payment["voucher_code_id"] is not None

    me = client.get("/api/v1/auth/me", headers=student["headers"]).json()
    assert me["has_active_subscription"] is True
    expires = _parse(me["subscription_expires_at"])
    assert abs(expires - datetime.now(timezone.utc) - timedelta(days=183)) < timedelta(minutes=5)
    assert _notifications(client, student)[0]["title"] == "Abonnement activé"

    used = client.get("/api/v1/admin/vouchers", params={"isUsed": "true"}, headers=admin["headers"]).json()
    assert used["items"][0]["used_by"] == student["id"]

    other = make_user("autre@medqbank.tn")
    r = client.post("/api/v1/payments", json={"method": "voucher", "voucher_code": code},
                    headers=auth_headers(other))
    assert r.status_code == 400
    assert r.json()["error"] == "Voucher code already used"


def test_expired_voucher_is_rejected(client, admin, student):
    code = _vouchers(client, admin, plan="annual", expires_in_days=1)[0]["code"]

    async def expire():
        async with db_helper.session_factory() as session:
            await session.execute(
                update(VoucherCode).values(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
            )
            await session.commit()

    run(expire())
    r = client.post("/api/v1/payments", json={"method": "voucher", "voucher_code": code}, headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Voucher code expired"
    assert client.get("/api/v1/auth/me", headers=student["headers"]).json()["has_active_subscription"] is False
