from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from channelchat.apps.api.main import create_app
from channelchat.core.config import get_settings
from channelchat.tests.utils.catalog import add_permission, create_user, seed_default_catalog


def _headers(user_id: str = "u1", email: str | None = None) -> dict[str, str]:
    return {
        "X-User-Id": user_id,
        "X-User-Email": email or f"{user_id}@example.com",
        "X-User-Name": user_id.upper(),
    }


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _stream_turn(client: AsyncClient, session_id: str, payload: dict, headers: dict) -> list[dict]:
    events: list[dict] = []
    async with client.stream("POST", f"/v1/sessions/{session_id}/turns", json=payload, headers=headers) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        async for line in response.aiter_lines():
            if line.startswith("data:"):
                events.append(json.loads(line.removeprefix("data:").strip()))
    return events


@pytest.mark.asyncio
async def test_health_and_missing_identity() -> None:
    async with _client() as client:
        health = await client.get("/v1/health", headers={"X-Request-Id": "req-1"})
        assert health.status_code == 200
        assert health.json() == {"data": {"status": "ok"}, "meta": {"request_id": "req-1", "api_version": "v1"}}

        unauthenticated = await client.get("/v1/sessions")
        assert unauthenticated.status_code == 401
        assert unauthenticated.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_chat_flow_streams_persists_exports_and_clears() -> None:
    await seed_default_catalog()
    headers = _headers()
    async with _client() as client:
        opened = await client.post("/v1/sessions/current", headers=headers)
        assert opened.status_code == 200
        session = opened.json()["data"]["session"]
        assert opened.json()["data"]["messages"] == []
        assert session["channel_id"] == "general"
        session_id = session["id"]

        reopened = await client.post("/v1/sessions/current", headers=headers)
        assert reopened.json()["data"]["session"]["id"] == session_id

        channels = await client.get("/v1/channels", headers=headers)
        assert {item["id"] for item in channels.json()["data"]} == {"general", "coding", "creative"}
        coding = await client.get("/v1/channels/coding/models", headers=headers)
        assert coding.json()["data"]["available"] is True
        assert {item["id"] for item in coding.json()["data"]["models"]} == {"gpt-4o", "claude-3-5-sonnet"}

        events = await _stream_turn(client, session_id, {"message": "Hello there"}, headers)
        types = [event["type"] for event in events]
        assert types[0] == "turn.accepted"
        assert types[-1] == "message.final"
        assert "token.delta" in types
        assert all(event["session_id"] == session_id for event in events)
        final = events[-1]["data"]
        assert final["status"] == "ok"
        deltas = "".join(event["data"]["delta"] for event in events if event["type"] == "token.delta")
        assert final["message"]["content"] == deltas == "This is a fake response. "

        transcript = await client.get(f"/v1/sessions/{session_id}/messages", headers=headers)
        messages = transcript.json()["data"]["messages"]
        assert [item["role"] for item in messages] == ["user", "assistant"]
        assert transcript.json()["data"]["session"]["title"] == "Hello there"

        exported = await client.get(f"/v1/sessions/{session_id}/export", headers=headers)
        assert exported.status_code == 200
        assert exported.headers["content-disposition"].startswith('attachment; filename="chat-export-')
        document = exported.json()
        assert document["channel"] == "General"
        assert [item["content"] for item in document["messages"]] == ["Hello there", "This is a fake response. "]

        refused = await client.delete(f"/v1/sessions/{session_id}/messages", headers=headers)
        assert refused.status_code == 400
        assert refused.json()["error"]["code"] == "CONFIRMATION_REQUIRED"
        cleared = await client.delete(f"/v1/sessions/{session_id}/messages?confirm=true", headers=headers)
        assert cleared.json()["data"] == {"session_id": session_id, "deleted": 2}


@pytest.mark.asyncio
async def test_turn_rejections_are_plain_json_errors() -> None:
    await seed_default_catalog()
    async with _client() as client:
        opened = await client.post("/v1/sessions", json={"channel_id": "coding", "model_id": "gpt-4o"}, headers=_headers())
        assert opened.status_code == 201
        session_id = opened.json()["data"]["id"]

        not_allowed = await client.post(
            f"/v1/sessions/{session_id}/turns",
            json={"message": "hi", "model_id": "gpt-4o-mini"},
            headers=_headers(),
        )
        assert not_allowed.status_code == 403
        assert not_allowed.json()["error"]["code"] == "MODEL_NOT_ALLOWED"

        foreign = await client.post(f"/v1/sessions/{session_id}/turns", json={"message": "hi"}, headers=_headers("u2"))
        assert foreign.status_code == 404
        assert foreign.json()["error"]["code"] == "SESSION_NOT_FOUND"

        empty = await client.post(f"/v1/sessions/{session_id}/turns", json={"message": ""}, headers=_headers())
        assert empty.status_code == 422

        await add_permission("u1", "deny", channel_id="coding")
        no_models = await client.get("/v1/channels/coding/models", headers=_headers())
        assert no_models.status_code == 200
        assert no_models.json()["data"] == {"channel_id": "coding", "models": [], "available": False}
        blocked = await client.post(f"/v1/sessions/{session_id}/turns", json={"message": "hi"}, headers=_headers())
        assert blocked.status_code == 409
        assert blocked.json()["error"]["code"] == "NO_AVAILABLE_MODEL"


@pytest.mark.asyncio
async def test_admin_endpoints_manage_catalog_permissions_and_users() -> None:
    await seed_default_catalog()
    admin = _headers("root", email=get_settings().admin_email)
    async with _client() as client:
        # Provision a regular user through a normal request.
        await client.get("/v1/sessions", headers=_headers())

        forbidden = await client.get("/v1/admin/stats", headers=_headers())
        assert forbidden.status_code == 403
        assert forbidden.json()["error"]["code"] == "AUTH_FORBIDDEN"

        invalid = await client.post(
            "/v1/admin/permissions",
            json={"user_id": "u1", "channel_id": "general", "model_id": "gpt-4o", "permission_type": "deny"},
            headers=admin,
        )
        assert invalid.status_code == 422
        assert invalid.json()["error"]["code"] == "PERMISSION_RULE_INVALID"

        rule = await client.post(
            "/v1/admin/permissions",
            json={"user_id": "u1", "model_id": "gpt-4o", "permission_type": "deny"},
            headers=admin,
        )
        assert rule.status_code == 201
        rule_id = rule.json()["data"]["id"]
        general = await client.get("/v1/channels/general/models", headers=_headers())
        assert {item["id"] for item in general.json()["data"]["models"]} == {"gpt-4o-mini", "claude-3-5-sonnet"}

        deleted = await client.delete(f"/v1/admin/permissions/{rule_id}", headers=admin)
        assert deleted.json()["data"] == {"id": rule_id, "deleted": True}

        created = await client.post(
            "/v1/admin/models",
            json={
                "id": "gemini-flash",
                "name": "gemini-flash",
                "display_name": "Gemini Flash",
                "provider": "google",
                "model_id": "gemini-1.5-flash",
            },
            headers=admin,
        )
        assert created.status_code == 201
        duplicate = await client.post("/v1/admin/models", json=created.json()["data"], headers=admin)
        assert duplicate.status_code == 409

        # general's allow-list does not name the new model until the channel is opened up.
        patched = await client.patch("/v1/admin/channels/general", json={"allowed_models": None}, headers=admin)
        assert patched.json()["data"]["allowed_models"] is None
        general = await client.get("/v1/channels/general/models", headers=_headers())
        assert "gemini-flash" in {item["id"] for item in general.json()["data"]["models"]}

        retired = await client.patch("/v1/admin/models/gemini-flash", json={"is_active": False}, headers=admin)
        assert retired.json()["data"]["is_active"] is False
        all_models = await client.get("/v1/admin/models", headers=admin)
        assert "gemini-flash" in {item["id"] for item in all_models.json()["data"]}

        stats = await client.get("/v1/admin/stats", headers=admin)
        assert stats.json()["data"]["total_users"] == 2
        assert stats.json()["data"]["active_models"] == 3

        users = await client.get("/v1/admin/users", headers=admin)
        roles = {item["id"]: item["role"] for item in users.json()["data"]}
        assert roles == {"u1": "user", "root": "admin"}

        bad_role = await client.patch("/v1/admin/users/u1", json={"role": "owner"}, headers=admin)
        assert bad_role.status_code == 422
        deactivated = await client.patch("/v1/admin/users/u1", json={"is_active": False}, headers=admin)
        assert deactivated.json()["data"]["is_active"] is False

        locked_out = await client.get("/v1/sessions", headers=_headers())
        assert locked_out.status_code == 403
        assert locked_out.json()["error"]["code"] == "USER_INACTIVE"


@pytest.mark.asyncio
async def test_sessions_cannot_be_opened_in_a_denied_channel() -> None:
    await create_user("u1")
    await seed_default_catalog()
    await add_permission("u1", "deny", channel_id="general")
    async with _client() as client:
        created = await client.post(
            "/v1/sessions", json={"channel_id": "general", "model_id": "gpt-4o"}, headers=_headers()
        )
        assert created.status_code == 409
        assert created.json()["error"]["code"] == "NO_AVAILABLE_MODEL"

        current = await client.post("/v1/sessions/current", headers=_headers())
        assert current.status_code == 409

        unknown_model = await client.post(
            "/v1/sessions", json={"channel_id": "coding", "model_id": "no-such-model"}, headers=_headers()
        )
        assert unknown_model.status_code == 403
        assert unknown_model.json()["error"]["code"] == "MODEL_NOT_ALLOWED"

        listed = await client.get("/v1/sessions", headers=_headers())
        assert listed.json()["data"] == []


@pytest.mark.asyncio
async def test_channel_allow_lists_only_name_known_models() -> None:
    await seed_default_catalog()
    admin = _headers("root", email=get_settings().admin_email)
    async with _client() as client:
        created = await client.post(
            "/v1/admin/channels",
            json={"id": "research", "name": "Research", "allowed_models": ["gpt-4o", "no-such-model"]},
            headers=admin,
        )
        assert created.status_code == 422
        assert created.json()["error"]["code"] == "ALLOWED_MODELS_INVALID"
        assert created.json()["error"]["details"]["unknown_models"] == ["no-such-model"]

        patched = await client.patch("/v1/admin/channels/general", json={"allowed_models": ["ghost"]}, headers=admin)
        assert patched.status_code == 422
        assert patched.json()["error"]["code"] == "ALLOWED_MODELS_INVALID"

        channels = {item["id"]: item for item in (await client.get("/v1/admin/channels", headers=admin)).json()["data"]}
        assert "research" not in channels
        assert channels["general"]["allowed_models"] == ["claude-3-5-sonnet", "gpt-4o", "gpt-4o-mini"]

        valid = await client.post(
            "/v1/admin/channels",
            json={"id": "research", "name": "Research", "allowed_models": ["gpt-4o"]},
            headers=admin,
        )
        assert valid.status_code == 201
        assert valid.json()["data"]["allowed_models"] == ["gpt-4o"]
