"""CLI 入口模块 -- python -m cadence.core <command>

支持的命令：
  init-db                          创建数据库与表结构
  run-reminders <organization_id>  立即为组织执行一次提醒编排并处理产生的 Job
"""

import asyncio
import sys

from .config import get_db_path

USAGE = """用法: python -m cadence.core <command>
命令:
  init-db                          创建数据库与表结构
  run-reminders <organization_id>  立即为组织执行一次提醒编排并处理产生的 Job"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "run-reminders":
        if len(sys.argv) < 3 or not sys.argv[2].isdigit():
            print("用法: python -m cadence.core run-reminders <organization_id>")
            sys.exit(1)
        asyncio.run(run_reminders(int(sys.argv[2])))
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, run-reminders")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库（init_db 幂等，可重复执行）"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.conn.close()
    print("初始化完成")


async def run_reminders(organization_id: int) -> None:
    """同步执行一次提醒编排，并在当前进程内处理队列直到清空可执行 Job"""
    from cadence.queue import JobDispatcher, ProcessorRegistry
    from cadence.queue.processors import register_builtin_processors
    from cadence.reminders import LoggingDeliverer, ReminderEngine

    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)

    try:
        registry = ProcessorRegistry()
        dispatcher = JobDispatcher(store_group.job_store, registry)
        engine = ReminderEngine(store_group, dispatcher)
        register_builtin_processors(registry, store_group, engine, LoggingDeliverer())

        summary = await engine.process_reminders(organization_id)
        print(
            f"处理 {summary.processed} 条义务事项，"
            f"提醒 {summary.reminders_sent} 条，升级 {summary.escalations_sent} 条"
        )
        executed = await dispatcher.drain()
        print(f"执行 {executed} 个 Job")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
