"""初始化数据库

创建所有表，并为配置的店主创建一个演示店铺（附带默认服务项目）。

使用方式：
    python scripts/init_db.py
    python scripts/init_db.py --shop-name "Downtown Barbers" --opening 09:00 --closing 19:00
"""
import argparse
import os
import sys

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from config.business_config import business_config
from config.settings import settings
from database import DatabaseManager


def init_database(db: DatabaseManager, owner_id: str, shop_name: str,
                  opening_time=None, closing_time=None, queue_mode=None):
    """初始化数据库和种子数据

    店主已有店铺时不重复创建。

    Returns:
        店主的店铺对象
    """
    logger.info("Creating tables...")
    db.create_tables()

    shop = db.shops.get_by_owner(owner_id)
    if shop is not None:
        logger.info(f"Shop '{shop.name}' already exists for owner {owner_id}")
        return shop

    shop = db.shops.create(
        shop_name,
        owner_id,
        opening_time=opening_time,
        closing_time=closing_time,
        queue_mode=queue_mode or settings.default_queue_mode,
    )
    logger.info(f"Created shop: {shop.name}")

    # 插入默认服务项目（从 business_config 获取）
    for service in business_config.get_default_services():
        db.services.create(
            shop.id,
            service["name"],
            service["price"],
            service["duration_minutes"],
        )
        logger.info(f"Created service: {service['name']}")

    return shop


def main():
    parser = argparse.ArgumentParser(description="初始化 QueueDesk 数据库")
    parser.add_argument("--db", default=settings.database_url, help="数据库连接 URL")
    parser.add_argument("--owner", default=settings.web_username, help="店主身份 owner_id")
    parser.add_argument("--shop-name", default="My Barbershop", help="店铺名称")
    parser.add_argument("--opening", default=None, help="营业开始时间 HH:MM")
    parser.add_argument("--closing", default=None, help="营业结束时间 HH:MM")
    parser.add_argument("--queue-mode", default=None,
                        choices=["bounded_daily", "always_open"], help="排队模式")
    args = parser.parse_args()

    logger.info("Initializing database...")
    db = DatabaseManager(args.db)
    try:
        init_database(db, args.owner, args.shop_name,
                      args.opening, args.closing, args.queue_mode)
    finally:
        db.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    main()
