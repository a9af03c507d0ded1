# ruff: noqa: S101
from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from uuid import UUID, uuid4

import httpx
import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.automation import router as automation_router
from app.api.change_requests import router as change_requests_router
from app.api.roles import admin_router, me_router
from app.core.auth import create_access_token
from app.core.errors import ChangeRequestError, change_request_error_handler
from app.db.session import get_session
from app.models.roles import SuperManager
from app.models.teams import Team, TeamMembership
from app.models.users import User
from app.services.background_tasks import BackgroundTaskRunner
from app.services.change_request_automation import ChangeRequestAutomation, CiWebhookNotifier

PAYLOAD = '{"route": "/v1/search", "timeout_ms": 1500}'


def _build_test_app(session_maker: async_sessionmaker[AsyncSession]) -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(ChangeRequestError, change_request_error_handler)
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(change_requests_router)
    api_v1.include_router(automation_router)
    api_v1.include_router(admin_router)
    api_v1.include_router(me_router)
    app.include_router(api_v1)

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    return app


async def _file_backed(tmp_path: Path) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def _seed(session_maker: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    async with session_maker() as session:
        requester = User(username="requester", email="requester@example.com")
        manager = User(username="manager", email="manager@example.com")
        editor = User(username="editor", email="editor@example.com")
        team = Team(name="Search")
        session.add_all([requester, manager, editor, team])
        session.add(TeamMembership(user_id=requester.id, team_id=team.id))
        session.add(SuperManager(user_id=manager.id))
        await session.commit()
        return {
            "requester": requester.id,
            "manager": manager.id,
            "editor": editor.id,
            "team": team.id,
        }


def _auth(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}


@pytest.mark.asyncio
async def test_change_request_flow_over_http(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    app = _build_test_app(session_maker)
    hooks: list[httpx.Request] = []
    runner = BackgroundTaskRunner()
    app.state.change_request_automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=CiWebhookNotifier(
            url="https://ci.example.com/hook",
            transport=httpx.MockTransport(
                lambda request: hooks.append(request) or httpx.Response(200),
            ),
        ),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        created = await client.post(
            "/api/v1/change-requests",
            json={
                "title": "Lower search timeout",
                "config_changes_payload": PAYLOAD,
                "requester_team_id": str(ids["team"]),
            },
            headers=_auth(ids["requester"]),
        )
        assert created.status_code == 201
        body = created.json()
        assert body["approval_status"] == "PENDING_APPROVAL"
        assert body["execution_status"] == "DRAFT"
        cr_id = body["id"]

        forbidden = await client.post(
            f"/api/v1/change-requests/{cr_id}/review",
            json={"review_decision": "APPROVED"},
            headers=_auth(ids["requester"]),
        )
        assert forbidden.status_code == 403
        assert forbidden.json()["error"] == "forbidden"

        status_before = await client.get(f"/api/v1/automation/change-requests/{cr_id}/status")
        assert status_before.status_code == 200
        assert status_before.json()["can_execute"] is False

        approved = await client.post(
            f"/api/v1/change-requests/{cr_id}/review",
            json={"review_decision": "APPROVED"},
            headers=_auth(ids["manager"]),
        )
        assert approved.status_code == 200
        assert approved.json()["approval_status"] == "APPROVED"
        await runner.drain()

        edit = await client.put(
            f"/api/v1/change-requests/{cr_id}",
            json={"title": "Too late"},
            headers=_auth(ids["requester"]),
        )
        assert edit.status_code == 409
        assert edit.json()["error"] == "invalid_state"

        comment = await client.post(
            f"/api/v1/change-requests/{cr_id}/comments",
            json={"comment_text": "Rolling out in the next window"},
            headers=_auth(ids["editor"]),
        )
        assert comment.status_code == 201
        assert comment.json()["comment_text"] == "Rolling out in the next window"

        detail = await client.get(f"/api/v1/change-requests/{cr_id}", headers=_auth(ids["editor"]))
        assert detail.status_code == 200
        detail_body = detail.json()
        assert detail_body["execution_status"] == "IN_PROGRESS"
        assert [review["decision"] for review in detail_body["reviews"]] == ["APPROVED"]
        assert [entry["event_type"] for entry in detail_body["history"]] == [
            "CREATED",
            "STATUS_CHANGE",
            "STATUS_CHANGE",
            "COMMENT_ADDED",
        ]

        history = await client.get(
            f"/api/v1/change-requests/{cr_id}/history",
            headers=_auth(ids["editor"]),
        )
        assert history.json()[2]["actor_user_id"] == str(UUID(int=0))

        not_editor = await client.put(
            f"/api/v1/change-requests/{cr_id}/execution-status",
            json={"execution_status": "COMPLETED"},
            headers=_auth(ids["editor"]),
        )
        assert not_editor.status_code == 403

        granted = await client.post(
            "/api/v1/admin/gateway-editors",
            json={"user_id": str(ids["editor"])},
            headers=_auth(ids["manager"]),
        )
        assert granted.status_code == 201
        duplicate = await client.post(
            "/api/v1/admin/gateway-editors",
            json={"user_id": str(ids["editor"])},
            headers=_auth(ids["manager"]),
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "conflict"

        roles = await client.get("/api/v1/me/roles", headers=_auth(ids["editor"]))
        assert roles.json() == {
            "user_id": str(ids["editor"]),
            "is_super_manager": False,
            "is_gateway_editor": True,
        }

        completed = await client.put(
            f"/api/v1/change-requests/{cr_id}/execution-status",
            json={"execution_status": "COMPLETED"},
            headers=_auth(ids["editor"]),
        )
        assert completed.status_code == 200
        assert completed.json()["execution_status"] == "COMPLETED"

        listed = await client.get(
            "/api/v1/change-requests",
            params={"execution_status": "COMPLETED"},
            headers=_auth(ids["requester"]),
        )
        assert [row["id"] for row in listed.json()] == [cr_id]

        triggered = await client.post(
            f"/api/v1/automation/change-requests/{cr_id}/trigger",
            headers=_auth(ids["manager"]),
        )
        assert triggered.status_code == 200
        assert triggered.json()["transitioned"] is False

    assert len(hooks) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_validation_and_auth_errors(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    app = _build_test_app(session_maker)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        anonymous = await client.get("/api/v1/change-requests")
        assert anonymous.status_code == 401

        unknown_user = await client.get("/api/v1/change-requests", headers=_auth(uuid4()))
        assert unknown_user.status_code == 401

        garbage = await client.get(
            "/api/v1/change-requests",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert garbage.status_code == 401

        bad_payload = await client.post(
            "/api/v1/change-requests",
            json={
                "title": "Bad",
                "config_changes_payload": "not json",
                "requester_team_id": str(ids["team"]),
            },
            headers=_auth(ids["requester"]),
        )
        assert bad_payload.status_code == 422
        assert bad_payload.json()["error"] == "invalid_payload"

        wrong_team = await client.post(
            "/api/v1/change-requests",
            json={
                "title": "Wrong team",
                "config_changes_payload": PAYLOAD,
                "requester_team_id": str(uuid4()),
            },
            headers=_auth(ids["requester"]),
        )
        assert wrong_team.status_code == 403
        assert wrong_team.json()["error"] == "unauthorized"

        missing = await client.get(
            f"/api/v1/change-requests/{uuid4()}",
            headers=_auth(ids["requester"]),
        )
        assert missing.status_code == 404

        missing_status = await client.get(f"/api/v1/automation/change-requests/{uuid4()}/status")
        assert missing_status.status_code == 404

        created = await client.post(
            "/api/v1/change-requests",
            json={
                "title": "Tune retries",
                "config_changes_payload": PAYLOAD,
                "requester_team_id": str(ids["team"]),
            },
            headers=_auth(ids["requester"]),
        )
        cr_id = created.json()["id"]
        for page in ("0", "-3"):
            clamped = await client.get(
                "/api/v1/change-requests",
                params={"page": page},
                headers=_auth(ids["requester"]),
            )
            assert clamped.status_code == 200
            assert [row["id"] for row in clamped.json()] == [cr_id]

        bad_decision = await client.post(
            f"/api/v1/change-requests/{cr_id}/review",
            json={"review_decision": "LGTM"},
            headers=_auth(ids["manager"]),
        )
        assert bad_decision.status_code == 422
        assert bad_decision.json()["error"] == "invalid_decision"

        no_runner = await client.post(
            f"/api/v1/automation/change-requests/{cr_id}/trigger",
            headers=_auth(ids["manager"]),
        )
        assert no_runner.status_code == 503
    await engine.dispose()
