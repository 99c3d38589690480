"""全局 pytest 配置 -- 临时 SQLite 数据库 + 常用任务/booking fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from logitrack.core.models import Booking, ServiceType, TaskAssignment
from logitrack.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from logitrack.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供共享连接的 StoreGroup"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def make_booking(store_group: StoreGroup):
    """创建并提交一条 booking"""

    async def _make(
        booking_id: str = "booking-001",
        client_id: str = "client-001",
        partner_id: str = "partner-001",
    ) -> Booking:
        now = datetime.now(UTC)
        booking = Booking(
            booking_id=booking_id,
            client_id=client_id,
            partner_id=partner_id,
            created_at=now,
            updated_at=now,
        )
        await store_group.booking_store.create_booking(booking)
        await store_group.conn.commit()
        return booking

    return _make


def assignment_for(
    booking_id: str = "booking-001",
    provider_id: str = "provider-001",
    **overrides,
) -> TaskAssignment:
    """构建分配请求"""
    fields = {
        "provider_id": provider_id,
        "provider_name": "Acme Movers",
        "booking_id": booking_id,
        "service_type": ServiceType.MOVING,
        "pickup_address": "1 Origin Rd",
        "delivery_address": "9 Destination Ave",
        "client_name": "Dana",
    }
    fields.update(overrides)
    return TaskAssignment(**fields)


@pytest.fixture
def assignment_factory():
    """返回分配请求构建函数"""
    return assignment_for
