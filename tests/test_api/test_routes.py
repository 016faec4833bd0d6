"""HTTP-level tests for the workflow and condition routes.

Each request runs in its own session from the test session factory, so
state only carries over between requests when the previous one committed.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from factories import OTHER_USER_ID, OWNER_ID
from transaction_engine.api import deps
from transaction_engine.infrastructure.database import engine as engine_module
from transaction_engine.main import create_app

HEADERS = {"X-Actor-Id": str(OWNER_ID)}


@pytest_asyncio.fixture
async def client(session_factory, dispatcher, automation, settings):
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[deps.get_db_session] = override_session
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_automation_engine] = lambda: automation
    app.dependency_overrides[deps.get_app_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await dispatcher.drain()


@pytest_asyncio.fixture
async def transaction(client, purchase_template) -> dict:
    response = await client.post(
        "/api/v1/transactions",
        json={"workflow_template_id": purchase_template.id, "type": "purchase"},
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()


async def reach_identity_step(client, transaction_id: int) -> int:
    """Add John Buyer, jump to firm-pending and return the identity condition id."""
    response = await client.post(
        f"/api/v1/transactions/{transaction_id}/parties",
        json={"role": "buyer", "full_name": "John Buyer"},
        headers=HEADERS,
    )
    assert response.status_code == 201
    response = await client.post(
        f"/api/v1/transactions/{transaction_id}/goto",
        json={"target_step_order": 5},
        headers=HEADERS,
    )
    assert response.status_code == 200
    [condition_id] = response.json()["created_condition_ids"]
    return condition_id


class TestTransactionRoutes:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client, transaction) -> None:
        assert transaction["type"] == "purchase"
        assert transaction["owner_user_id"] == OWNER_ID
        assert [s["status"] for s in transaction["steps"]] == ["active"] + ["pending"] * 5
        assert transaction["current_step_id"] == transaction["steps"][0]["id"]

        response = await client.get(f"/api/v1/transactions/{transaction['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["id"] == transaction["id"]
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_unknown_type(self, client, purchase_template) -> None:
        response = await client.post(
            "/api/v1/transactions",
            json={"workflow_template_id": purchase_template.id, "type": "lease"},
            headers=HEADERS,
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "E_VALIDATION_FAILED"
        assert error["field"] == "type"

    @pytest.mark.asyncio
    async def test_other_tenant_sees_not_found(self, client, transaction) -> None:
        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}",
            headers={"X-Actor-Id": str(OTHER_USER_ID)},
        )
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "E_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_actor_header(self, client, transaction) -> None:
        response = await client.get(f"/api/v1/transactions/{transaction['id']}")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "E_VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_advance_and_status(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/advance",
            json={"note": "Consultation done"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["previous_step"]["status"] == "completed"
        assert body["new_step"]["slug"] == "negotiation"

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/status", headers=HEADERS
        )
        status = response.json()
        assert status["current_step_order"] == 2
        assert status["completed_steps"] == 1
        assert status["total_steps"] == 6


class TestGateRoutes:
    @pytest.mark.asyncio
    async def test_blocked_advance_returns_conditions(self, client, transaction) -> None:
        condition_id = await reach_identity_step(client, transaction["id"])

        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/advance", json={}, headers=HEADERS
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "E_BLOCKING_CONDITIONS"
        assert error["blockingConditions"] == [
            {
                "id": condition_id,
                "title": "FINTRAC — John Buyer",
                "level": "blocking",
                "dueDate": None,
            }
        ]

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/status", headers=HEADERS
        )
        assert response.json()["current_step_order"] == 5

    @pytest.mark.asyncio
    async def test_required_advance_returns_conditions(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Inspection", "level": "required", "due_date": "2026-03-01"},
            headers=HEADERS,
        )
        condition_id = response.json()["id"]

        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/advance", json={}, headers=HEADERS
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "E_REQUIRED_RESOLUTIONS_NEEDED"
        assert error["requiredConditions"] == [
            {
                "id": condition_id,
                "title": "Inspection",
                "level": "required",
                "dueDate": "2026-03-01",
            }
        ]

    @pytest.mark.asyncio
    async def test_required_resolutions_inline(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Inspection", "level": "required"},
            headers=HEADERS,
        )
        condition_id = response.json()["id"]

        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/advance",
            json={
                "required_resolutions": [
                    {
                        "condition_id": condition_id,
                        "resolution_type": "not_applicable",
                        "note": "Seller's report used",
                    }
                ]
            },
            headers=HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["new_step"]["step_order"] == 2
        assert body["archived_condition_ids"] == [condition_id]

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/conditions/by-step", headers=HEADERS
        )
        [group] = response.json()
        [condition] = group["conditions"]
        assert condition["resolution_type"] == "not_applicable"
        assert condition["archived_step"] == 2

    @pytest.mark.asyncio
    async def test_step_check_preview(self, client, transaction) -> None:
        await reach_identity_step(client, transaction["id"])

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/step-check", headers=HEADERS
        )
        body = response.json()
        assert body["can_advance"] is False
        assert body["step_order"] == 5
        assert [c["title"] for c in body["blocking_conditions"]] == ["FINTRAC — John Buyer"]
        assert body["offer_required"] is False

    @pytest.mark.asyncio
    async def test_compliance_flow(self, client, transaction) -> None:
        condition_id = await reach_identity_step(client, transaction["id"])
        compliance_url = f"/api/v1/transactions/{transaction['id']}/compliance"

        response = await client.get(compliance_url, headers=HEADERS)
        assert response.json()["is_compliant"] is False

        response = await client.post(
            f"/api/v1/conditions/{condition_id}/complete", json={}, headers=HEADERS
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "E_RESOLUTION_FAILED"
        assert error["conditionId"] == condition_id

        response = await client.post(
            f"/api/v1/conditions/{condition_id}/evidence",
            json={"type": "file", "url": "s3://kyc/john-id.pdf"},
            headers=HEADERS,
        )
        assert response.status_code == 201

        response = await client.post(
            f"/api/v1/conditions/{condition_id}/complete", json={}, headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = await client.get(compliance_url, headers=HEADERS)
        assert response.json()["is_compliant"] is True


class TestConditionRoutes:
    @pytest.mark.asyncio
    async def test_create_update_history(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Financing", "level": "required"},
            headers=HEADERS,
        )
        assert response.status_code == 201
        condition = response.json()
        assert condition["transaction_step_id"] == transaction["current_step_id"]

        response = await client.patch(
            f"/api/v1/conditions/{condition['id']}",
            json={"level": "blocking"},
            headers=HEADERS,
        )
        assert response.json()["level"] == "blocking"

        response = await client.get(
            f"/api/v1/conditions/{condition['id']}/history", headers=HEADERS
        )
        history = response.json()
        assert [e["event_type"] for e in history] == ["created", "condition_updated"]
        assert history[1]["metadata"]["changes"]["level"] == {
            "from": "required",
            "to": "blocking",
        }

    @pytest.mark.asyncio
    async def test_patch_null_type_is_validation_error(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Financing"},
            headers=HEADERS,
        )
        condition_id = response.json()["id"]

        response = await client.patch(
            f"/api/v1/conditions/{condition_id}",
            json={"condition_type": None},
            headers=HEADERS,
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "E_VALIDATION_FAILED"
        assert error["field"] == "condition_type"

    @pytest.mark.asyncio
    async def test_invalid_level(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Financing", "level": "critical"},
            headers=HEADERS,
        )
        assert response.status_code == 422
        assert response.json()["error"]["field"] == "level"

    @pytest.mark.asyncio
    async def test_delete(self, client, transaction) -> None:
        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions",
            json={"title": "Tip"},
            headers=HEADERS,
        )
        condition_id = response.json()["id"]

        response = await client.delete(f"/api/v1/conditions/{condition_id}", headers=HEADERS)
        assert response.status_code == 204

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/conditions", headers=HEADERS
        )
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_remove_party_archives(self, client, transaction) -> None:
        condition_id = await reach_identity_step(client, transaction["id"])
        response = await client.get(f"/api/v1/transactions/{transaction['id']}", headers=HEADERS)
        [party] = response.json()["parties"]

        response = await client.delete(
            f"/api/v1/transactions/{transaction['id']}/parties/{party['id']}", headers=HEADERS
        )
        assert response.json() == {
            "party_id": party["id"],
            "archived_condition_ids": [condition_id],
        }

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/conditions/by-step", headers=HEADERS
        )
        [group] = response.json()
        assert group["step_order"] == 5
        assert group["conditions"][0]["archived"] is True
        assert group["conditions"][0]["archived_step"] == 5

        response = await client.post(
            f"/api/v1/conditions/{condition_id}/complete", json={}, headers=HEADERS
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E_CONDITION_ARCHIVED"


class TestConditionPackRoutes:
    @pytest.mark.asyncio
    async def test_profile_template_and_pack(self, client, transaction) -> None:
        profile_url = f"/api/v1/transactions/{transaction['id']}/profile"
        response = await client.get(profile_url, headers=HEADERS)
        assert response.status_code == 404

        response = await client.put(
            profile_url,
            json={
                "property_type": "house",
                "property_context": "rural",
                "is_financed": False,
                "has_well": True,
            },
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["has_well"] is True

        response = await client.post(
            "/api/v1/condition-templates",
            json={
                "label_fr": "Test de puits",
                "label_en": "Well test",
                "level": "required",
                "step": 2,
                "applies_when": {"has_well": True},
                "pack": "rural",
                "deadline_reference": "closing",
                "default_deadline_days": -10,
            },
            headers=HEADERS,
        )
        assert response.status_code == 201
        template_id = response.json()["id"]

        response = await client.get(
            "/api/v1/condition-templates", params={"step": 2}, headers=HEADERS
        )
        assert [t["id"] for t in response.json()] == [template_id]

        response = await client.post(
            f"/api/v1/transactions/{transaction['id']}/conditions/load-pack",
            json={"closing_date": "2026-05-01"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["loaded"] == 1
        assert body["by_step"] == {"2": 1}

        response = await client.get(
            f"/api/v1/transactions/{transaction['id']}/conditions", headers=HEADERS
        )
        [condition] = response.json()
        assert condition["id"] == body["condition_ids"][0]
        assert condition["template_id"] == template_id
        assert condition["due_date"] == "2026-04-21"

    @pytest.mark.asyncio
    async def test_invalid_profile(self, client, transaction) -> None:
        response = await client.put(
            f"/api/v1/transactions/{transaction['id']}/profile",
            json={"property_type": "castle", "property_context": "rural", "is_financed": False},
            headers=HEADERS,
        )
        assert response.status_code == 422
        assert response.json()["error"]["field"] == "property_type"

    @pytest.mark.asyncio
    async def test_templates_need_actor(self, client) -> None:
        response = await client.get("/api/v1/condition-templates")
        assert response.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_ok(self, client, db_engine, monkeypatch) -> None:
        monkeypatch.setattr(engine_module, "_engine", db_engine)

        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0", "database": "healthy"}
