"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from logitrack.core.config import DispatchConfig
from logitrack.core.models import Booking
from logitrack.core.store import create_store_group
from logitrack.gateway.services.outbox_dispatcher import OutboxDispatcher
from logitrack.gateway.services.sse_hub import SSEHub


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path):
    """集成测试用 FastAPI app，预置一条 booking"""
    os.environ["LOGITRACK_DB_PATH"] = str(tmp_path / "integration.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from logitrack.gateway.main import create_app

    app = create_app()

    store_group = await create_store_group(str(tmp_path / "integration.db"))
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    app.state.dispatcher = OutboxDispatcher(
        store_group, DispatchConfig(worker_enabled=False, backoff_base_s=0.001)
    )
    app.state.outbox_worker = None

    now = datetime.now(UTC)
    await store_group.booking_store.create_booking(
        Booking(
            booking_id="booking-e2e",
            client_id="client-e2e",
            partner_id="partner-e2e",
            created_at=now,
            updated_at=now,
        )
    )
    await store_group.conn.commit()

    yield app

    await store_group.conn.close()
    os.environ.pop("LOGITRACK_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
