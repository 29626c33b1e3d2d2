#!/usr/bin/env python3
"""QueueDesk - 理发店排队管理仪表盘入口

启动店主仪表盘 API 和每日报告定时任务。

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/queuedesk.db

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL         数据库连接地址
    WEB_PORT             Web 端口（默认 8080）
    WEB_USERNAME         店主登录名，即店主身份 owner_id（默认 owner）
    WEB_PASSWORD         登录密码
    FUNCTIONS_BASE_URL   云函数根地址（账单门户、远程统计）
    STORAGE_ENDPOINT_URL 头像对象存储地址
    DAILY_REPORT_TIME    每日报告时间（默认 21:00）
"""
import argparse
import asyncio
import signal
import sys

from loguru import logger

from config.settings import settings


def configure_logging(level: str):
    """按配置设置 loguru 输出级别"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


async def _cleanup(server, scheduler, db, functions):
    """统一资源清理：Web 服务、定时任务、云函数客户端、数据库连接"""
    logger.info("Cleaning up...")

    if server is not None:
        await server.shutdown()
    if scheduler is not None:
        scheduler.stop()
    if functions is not None:
        functions.close()
    if db is not None:
        db.close()

    logger.info("QueueDesk stopped")


async def main():
    parser = argparse.ArgumentParser(description="QueueDesk 理发店排队仪表盘")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=settings.database_url,
                        help="数据库连接 URL")
    parser.add_argument("--no-scheduler", action="store_true",
                        help="不启动每日报告定时任务")
    args = parser.parse_args()

    configure_logging(settings.log_level)

    from database import DatabaseManager
    from business.billing import UsagePolicy
    from business.functions_client import FunctionsClient
    from business.scheduler import Scheduler, make_daily_report_task
    from interface import DashboardContext, DashboardServer, TokenStore, create_dashboard_app

    server = None
    scheduler = None
    db = None
    functions = None

    try:
        db = DatabaseManager(args.db)
        db.create_tables()
        logger.info(f"Database connected: {db.database_url}")

        functions = FunctionsClient.from_settings()
        if functions is None:
            logger.warning("FUNCTIONS_BASE_URL not set, billing portal is unavailable")

        ctx = DashboardContext.build(
            db,
            functions=functions,
            policy=UsagePolicy.from_settings(),
            analytics_source=settings.analytics_source,
        )
        tokens = TokenStore(
            {settings.web_username: settings.web_password},
            ttl_hours=settings.web_token_ttl_hours,
        )
        server = DashboardServer(create_dashboard_app(ctx, tokens),
                                 host=args.host, port=args.port)
        await server.startup()

        if not args.no_scheduler:
            scheduler = Scheduler()
            scheduler.schedule_daily_report(
                make_daily_report_task(db, ctx.analytics, ctx.billing),
                settings.daily_report_time,
            )
            scheduler.start()

        print()
        print("=" * 60)
        print("  QueueDesk 已启动!")
        print(f"  访问地址: http://localhost:{args.port}")
        print(f"  店主账号: {settings.web_username}")
        print(f"  数据库: {db.database_url}")
        print(f"  每日报告: {'未启用' if scheduler is None else settings.daily_report_time}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()
        _shutdown_requested = False

        def signal_handler(signum):
            """处理退出信号"""
            nonlocal _shutdown_requested
            if _shutdown_requested:
                # 第二次收到信号，强制退出
                logger.warning("Second shutdown signal received, forcing exit")
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                return
            _shutdown_requested = True
            logger.info(f"Received signal {signum}, shutting down...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("Main task cancelled, cleaning up...")
    finally:
        await _cleanup(server, scheduler, db, functions)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        print("\n已停止。")
