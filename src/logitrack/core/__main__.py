"""CLI 入口模块 -- python -m logitrack.core <command>

支持的命令：
  rebuild-projections  从 events 表重建 tasks 表
  outbox-status        按状态统计 outbox 条目
  requeue-dead         将 dead 的 outbox 条目重新放回投递队列
"""

import asyncio
import sys
from datetime import UTC, datetime

from .config import get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m logitrack.core <command>")
        print("命令:")
        print("  rebuild-projections  从 events 表重建 tasks 表")
        print("  outbox-status        按状态统计 outbox 条目")
        print("  requeue-dead         将 dead 的 outbox 条目重新放回投递队列")
        sys.exit(1)

    command = sys.argv[1]

    if command == "rebuild-projections":
        asyncio.run(rebuild_projections())
    elif command == "outbox-status":
        asyncio.run(outbox_status())
    elif command == "requeue-dead":
        asyncio.run(requeue_dead())
    else:
        print(f"未知命令: {command}")
        print("可用命令: rebuild-projections, outbox-status, requeue-dead")
        sys.exit(1)


async def rebuild_projections() -> None:
    """执行 Projection 重建"""
    from .projection import rebuild_all
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始重建 Projection...")

    store_group = await create_store_group(db_path)

    try:
        event_count = await rebuild_all(
            store_group.conn,
            store_group.event_store,
            store_group.task_store,
        )
        print(f"重建完成，处理 {event_count} 条事件")
    finally:
        await store_group.conn.close()


async def outbox_status() -> None:
    """打印 outbox 各状态条目数"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())

    try:
        counts = await store_group.outbox_store.count_by_status()
        for status, count in counts.items():
            print(f"{status}: {count}")
    finally:
        await store_group.conn.close()


async def requeue_dead() -> None:
    """重置 dead 条目为 pending，由运行中的 worker 重新投递"""
    from .store import create_store_group
    from .store.transaction import atomic

    store_group = await create_store_group(get_db_path())

    try:
        async with atomic(store_group.conn):
            count = await store_group.outbox_store.requeue_dead(datetime.now(UTC))
        print(f"已重置 {count} 个 dead 条目")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
