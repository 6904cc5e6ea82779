"""
tests/test_routers_portal.py — Tests for the supplier portal API

Covers: session opening, vague auth failures, HTTP 429 on brute force,
listing scoped to the code, accept/decline/schedule/start/complete,
quotation submission, messages, scope and transition errors.

Called by: pytest
Depends on: routers/portal.py, conftest fixtures (client, access_code)
"""

from datetime import datetime, timedelta, timezone

from app.constants import SecurityEventType
from app.models import CommunicationLog, Notification, Quotation, SecurityEvent
from app.services.workflow import Actor, apply_event


def _future(days=1):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


class TestSession:
    def test_open_session(self, client, access_code, supplier):
        resp = client.post("/api/portal/session", json={"code": access_code.code})
        assert resp.status_code == 200
        data = resp.json()
        assert data["supplier"] == {"id": supplier.id, "name": supplier.name}
        assert data["assistance_id"] == access_code.assistance_id
        assert data["in_grace_period"] is False
        assert data["session_expires_at"]

    def test_code_from_query_string(self, client, access_code):
        resp = client.post(f"/api/portal/session?code={access_code.code}", json={})
        assert resp.status_code == 200

    def test_unknown_code_is_vague(self, client, db_session):
        resp = client.post("/api/portal/session", json={"code": "ZZZZ9999"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid or expired access code"
        # Precise reason only in the security log
        assert db_session.query(SecurityEvent).filter_by(
            event_type=SecurityEventType.INVALID_CODE.value
        ).count() == 1

    def test_revoked_code_same_message(self, client, make_code):
        code = make_code(is_revoked=True)
        resp = client.post("/api/portal/session", json={"code": code.code})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid or expired access code"

    def test_brute_force_returns_429(self, client, access_code):
        for i in range(5):
            assert client.post("/api/portal/session", json={"code": f"BAD{i:05d}"}).status_code == 401
        resp = client.post("/api/portal/session", json={"code": access_code.code})
        assert resp.status_code == 429

    def test_forwarded_for_is_the_client_ip(self, client, db_session):
        client.post(
            "/api/portal/session",
            json={"code": "ZZZZ9999"},
            headers={"X-Forwarded-For": "198.51.100.23, 10.0.0.1"},
        )
        event = db_session.query(SecurityEvent).one()
        assert event.ip_address == "198.51.100.23"


class TestListing:
    def test_bound_code_sees_only_its_assistance(self, client, access_code, make_assistance):
        make_assistance()
        resp = client.get(f"/api/portal/assistances?code={access_code.code}")
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert [i["id"] for i in items] == [access_code.assistance_id]
        assert items[0]["allowed_actions"] == ["accept", "decline", "cancel"]
        assert "admin_notes" not in items[0]

    def test_first_use_binds_to_latest_open(self, client, make_code, make_assistance):
        make_assistance()
        latest = make_assistance()
        code = make_code()
        resp = client.get(f"/api/portal/assistances?code={code.code}")
        assert [i["id"] for i in resp.json()["items"]] == [latest.id]

    def test_unbound_code_sees_all_assigned(self, client, make_code, make_assistance):
        code = make_code()
        # First use with nothing open leaves the code unbound
        assert client.post("/api/portal/session", json={"code": code.code}).json()["assistance_id"] is None
        make_assistance()
        make_assistance()
        make_assistance(status="completed")

        resp = client.get(f"/api/portal/assistances?code={code.code}")
        assert len(resp.json()["items"]) == 2
        resp = client.get(f"/api/portal/assistances?code={code.code}&include_closed=true")
        assert len(resp.json()["items"]) == 3

    def test_missing_code(self, client):
        assert client.get("/api/portal/assistances").status_code == 401


class TestActions:
    def test_accept(self, client, access_code, db_session, admin_user):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/accept",
            json={"code": access_code.code, "notes": "Amanhã de manhã"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "accepted"
        assert "schedule" in data["allowed_actions"]
        assert db_session.query(Notification).filter_by(recipient_email=admin_user.email).count() == 1

    def test_accept_with_date_schedules(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/accept",
            json={"code": access_code.code, "scheduled_start_date": _future(2)},
        )
        assert resp.json()["status"] == "scheduled"

    def test_decline_requires_reason(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/decline",
            json={"code": access_code.code, "reason": " "},
        )
        assert resp.status_code == 422

    def test_decline(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/decline",
            json={"code": access_code.code, "reason": "Fora da zona"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    def test_work_lifecycle(self, client, access_code):
        aid = access_code.assistance_id
        body = {"code": access_code.code}
        assert client.post(f"/api/portal/assistances/{aid}/accept", json=body).status_code == 200
        resp = client.post(
            f"/api/portal/assistances/{aid}/schedule", json={**body, "scheduled_start_date": _future(1)}
        )
        assert resp.json()["status"] == "scheduled"
        assert client.post(f"/api/portal/assistances/{aid}/start", json=body).json()["status"] == "in_progress"
        resp = client.post(f"/api/portal/assistances/{aid}/complete", json={**body, "final_cost": "120.50"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

    def test_invalid_transition_is_409(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/start", json={"code": access_code.code}
        )
        assert resp.status_code == 409
        assert "pending" in resp.json()["error"]

    def test_other_assistance_is_403(self, client, access_code, make_assistance):
        other = make_assistance()
        resp = client.post(f"/api/portal/assistances/{other.id}/accept", json={"code": access_code.code})
        assert resp.status_code == 403

    def test_other_suppliers_assistance_is_403(self, client, make_code, make_assistance, other_supplier):
        code = make_code()
        foreign = make_assistance(assigned_supplier_id=other_supplier.id)
        resp = client.post(f"/api/portal/assistances/{foreign.id}/accept", json={"code": code.code})
        assert resp.status_code == 403

    def test_unknown_assistance_is_404(self, client, make_code):
        code = make_code()
        resp = client.post("/api/portal/assistances/9999/accept", json={"code": code.code})
        assert resp.status_code == 404


class TestQuotationAndMessages:
    def test_submit_quotation(self, client, db_session, access_code, admin_user):
        apply_event(db_session, access_code.assistance_id, "request_quotation", Actor.admin(admin_user.id))
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/quotations",
            json={"code": access_code.code, "amount": "480.00", "description": "Material e mão de obra"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["amount"] == "480.00"
        assert db_session.query(Quotation).count() == 1

    def test_submit_quotation_rejects_zero(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/quotations",
            json={"code": access_code.code, "amount": "0"},
        )
        assert resp.status_code == 422

    def test_send_message(self, client, db_session, access_code, admin_user):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/messages",
            json={"code": access_code.code, "message": "Preciso de acesso à garagem"},
        )
        assert resp.status_code == 200
        entry = db_session.query(CommunicationLog).one()
        assert entry.sender_type == "supplier"
        assert entry.message == "Preciso de acesso à garagem"
        n = db_session.query(Notification).one()
        assert n.template_id == "supplier_message"
        assert n.recipient_email == admin_user.email

    def test_empty_message(self, client, access_code):
        resp = client.post(
            f"/api/portal/assistances/{access_code.assistance_id}/messages",
            json={"code": access_code.code, "message": ""},
        )
        assert resp.status_code == 422
