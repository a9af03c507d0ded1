# ruff: noqa: S101
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import NotFoundError
from app.models.change_requests import ChangeRequest
from app.models.roles import GatewayEditor, SuperManager
from app.models.teams import Team, TeamMembership
from app.models.users import User
from app.services.background_tasks import BackgroundTaskRunner
from app.services.change_request_audit import list_history
from app.services.change_request_automation import (
    ChangeRequestAutomation,
    CiWebhookNotifier,
    automation_task,
    build_ci_status,
    decode_automation_task,
    webhook_task,
)
from app.services.change_request_lifecycle import ChangeRequestLifecycle
from app.services.change_request_policy import SYSTEM_ACTOR_ID

PAYLOAD = '{"listener": "edge-https", "tls_policy": "modern"}'
WEBHOOK_URL = "https://ci.example.com/hooks/gateway"


async def _file_backed(tmp_path: Path) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def _seed(session_maker: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    async with session_maker() as session:
        requester = User(username="requester", email="requester@example.com")
        manager = User(username="manager", email="manager@example.com")
        editor = User(username="editor", email="editor@example.com")
        team = Team(name="Edge Platform")
        session.add_all([requester, manager, editor, team])
        session.add(TeamMembership(user_id=requester.id, team_id=team.id))
        session.add(SuperManager(user_id=manager.id))
        session.add(GatewayEditor(user_id=editor.id))
        await session.commit()
        return {
            "requester": requester.id,
            "manager": manager.id,
            "editor": editor.id,
            "team": team.id,
        }


async def _create_pending(
    session_maker: async_sessionmaker[AsyncSession],
    ids: dict[str, UUID],
) -> UUID:
    async with session_maker() as session:
        cr = await ChangeRequestLifecycle(session).create(
            requester_user_id=ids["requester"],
            requester_team_id=ids["team"],
            title="Enforce modern TLS policy",
            config_changes_payload=PAYLOAD,
        )
        return cr.id


def _recording_notifier(
    received: list[dict[str, object]],
    *,
    status_code: int = 202,
) -> CiWebhookNotifier:
    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert str(request.url) == WEBHOOK_URL
        received.append(json.loads(request.read().decode("utf-8")))
        return httpx.Response(status_code, json={"accepted": status_code < 400})

    return CiWebhookNotifier(
        url=WEBHOOK_URL,
        timeout_seconds=2,
        transport=httpx.MockTransport(_handler),
    )


@pytest.mark.asyncio
async def test_approval_starts_execution_and_notifies_webhook_once(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)
    received: list[dict[str, object]] = []
    runner = BackgroundTaskRunner()
    automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=_recording_notifier(received),
    )

    async with session_maker() as session:
        approved = await ChangeRequestLifecycle(session, automation=automation).record_review(
            cr_id,
            reviewer_user_id=ids["manager"],
            decision="APPROVED",
        )
        # The review call returns before automation has run.
        assert approved.execution_status == "DRAFT"
    await runner.drain()

    async with session_maker() as session:
        stored = await ChangeRequest.objects.by_id(cr_id).first(session)
        assert stored is not None
        assert stored.execution_status == "IN_PROGRESS"
        history = await list_history(session, change_request_id=cr_id)
    assert [(h.event_type, h.old_status, h.new_status) for h in history][-1] == (
        "STATUS_CHANGE",
        "DRAFT",
        "IN_PROGRESS",
    )
    assert history[-1].actor_user_id == SYSTEM_ACTOR_ID

    assert len(received) == 1
    payload = received[0]
    assert payload["cr_id"] == str(cr_id)
    assert payload["approval_status"] == "APPROVED"
    assert payload["execution_status"] == "IN_PROGRESS"
    assert payload["config_changes"] == PAYLOAD
    assert payload["requester_team_id"] == str(ids["team"])
    assert isinstance(payload["timestamp"], int)
    await engine.dispose()


@pytest.mark.asyncio
async def test_process_approved_is_idempotent(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)
    async with session_maker() as session:
        await ChangeRequestLifecycle(session).record_review(
            cr_id,
            reviewer_user_id=ids["manager"],
            decision="APPROVED",
        )
    received: list[dict[str, object]] = []
    runner = BackgroundTaskRunner()
    automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=_recording_notifier(received),
    )

    assert await automation.process_approved(cr_id) is True
    assert await automation.process_approved(cr_id) is False
    await runner.drain()

    async with session_maker() as session:
        history = await list_history(session, change_request_id=cr_id)
    automated = [h for h in history if h.actor_user_id == SYSTEM_ACTOR_ID]
    assert len(automated) == 1
    assert len(received) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_process_approved_skips_unapproved_and_unknown(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)
    runner = BackgroundTaskRunner()
    automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=CiWebhookNotifier(url=""),
    )

    assert await automation.process_approved(cr_id) is False
    with pytest.raises(NotFoundError):
        await automation.process_approved(uuid4())

    async with session_maker() as session:
        stored = await ChangeRequest.objects.by_id(cr_id).first(session)
        assert stored is not None
        assert stored.execution_status == "DRAFT"
    assert runner.pending == 0
    await engine.dispose()


@pytest.mark.asyncio
async def test_webhook_rejection_is_logged_not_raised(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)
    received: list[dict[str, object]] = []
    runner = BackgroundTaskRunner()
    automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=_recording_notifier(received, status_code=500),
    )

    async with session_maker() as session:
        await ChangeRequestLifecycle(session, automation=automation).record_review(
            cr_id,
            reviewer_user_id=ids["manager"],
            decision="APPROVED",
        )
    await runner.drain()

    async with session_maker() as session:
        stored = await ChangeRequest.objects.by_id(cr_id).first(session)
        assert stored is not None
        assert stored.execution_status == "IN_PROGRESS"
    assert len(received) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_notifier_returns_false_on_transport_error() -> None:
    attempts: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    notifier = CiWebhookNotifier(
        url=WEBHOOK_URL,
        timeout_seconds=1,
        transport=httpx.MockTransport(_handler),
    )

    assert await notifier.notify({"cr_id": "abc"}) is False
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_notifier_disabled_without_url() -> None:
    notifier = CiWebhookNotifier(url="   ")
    assert notifier.enabled is False
    assert await notifier.notify({"cr_id": "abc"}) is False


@pytest.mark.asyncio
async def test_ci_status_projection(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)

    async with session_maker() as session:
        pending = await build_ci_status(session, change_request_id=cr_id)
        assert pending.can_execute is False
        assert pending.requester_team == "Edge Platform"
        assert pending.config_changes == PAYLOAD

        await ChangeRequestLifecycle(session).record_review(
            cr_id,
            reviewer_user_id=ids["manager"],
            decision="APPROVED",
        )
        ready = await build_ci_status(session, change_request_id=cr_id)
        assert ready.can_execute is True
        assert ready.approval_status == "APPROVED"
        assert ready.execution_status == "DRAFT"

        with pytest.raises(NotFoundError):
            await build_ci_status(session, change_request_id=uuid4())
    await engine.dispose()


@pytest.mark.asyncio
async def test_simultaneous_process_approved_starts_execution_once(tmp_path: Path) -> None:
    engine, session_maker = await _file_backed(tmp_path)
    ids = await _seed(session_maker)
    cr_id = await _create_pending(session_maker, ids)
    async with session_maker() as session:
        await ChangeRequestLifecycle(session).record_review(
            cr_id,
            reviewer_user_id=ids["manager"],
            decision="APPROVED",
        )
    received: list[dict[str, object]] = []
    runner = BackgroundTaskRunner()
    automation = ChangeRequestAutomation(
        session_maker=session_maker,
        runner=runner,
        notifier=_recording_notifier(received),
    )

    outcomes = await asyncio.gather(
        automation.process_approved(cr_id),
        automation.process_approved(cr_id),
    )
    await runner.drain()

    assert sorted(outcomes) == [False, True]
    async with session_maker() as session:
        history = await list_history(session, change_request_id=cr_id)
    assert len([h for h in history if h.actor_user_id == SYSTEM_ACTOR_ID]) == 1
    assert len(received) == 1
    await engine.dispose()


def test_queued_task_envelopes() -> None:
    cr_id = uuid4()
    queued = automation_task(cr_id)

    assert queued.task_type == "change_request_automation"
    assert decode_automation_task(queued) == cr_id
    with pytest.raises(ValueError):
        decode_automation_task(webhook_task({"cr_id": str(cr_id)}))
