"""数据库管理器：统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.shops``、``db.queue_entries`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_queue_board()``、``get_barber_list()``），
   返回字典/基本类型，适合 Web 接口和定时任务。

所有子仓库共享同一个 ``ChangeFeed``，写入提交后向订阅方推送行级变更。
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .change_feed import ChangeFeed
from .connection import DatabaseConnection
from .entity_repos import BarberRepository, ServiceRepository, ShopRepository
from .queue_repos import BillableEventRepository, QueueEntryRepository
from .models import STATUS_DONE, STATUS_IN_PROGRESS, STATUS_NO_SHOW, STATUS_WAITING


class DatabaseManager:
    """数据库管理器：统一门面。

    Attributes:
        conn: 数据库连接管理器。
        feed: 变更推送中心。
        shops: 店铺仓库。
        barbers: 理发师仓库。
        services: 服务项目仓库。
        queue_entries: 排队记录仓库。
        billable_events: 计费事件仓库。

    Example::

        db = DatabaseManager("sqlite:///data/queuedesk.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        shop = db.shops.get_by_owner("owner-1")

        # 通过便捷方法访问（返回字典）
        board = db.get_queue_board(shop.id)
    """

    def __init__(self, database_url: Optional[str] = None,
                 feed: Optional[ChangeFeed] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            feed: 变更推送中心，为None时新建一个。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)
        self.feed = feed or ChangeFeed()

        # 实体仓库
        self.shops = ShopRepository(self.conn, self.feed)
        self.barbers = BarberRepository(self.conn, self.feed)
        self.services = ServiceRepository(self.conn, self.feed)

        # 业务记录仓库
        self.queue_entries = QueueEntryRepository(
            self.conn, self.shops, self.barbers, self.services, self.feed
        )
        self.billable_events = BillableEventRepository(self.conn, self.feed)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def ping(self) -> bool:
        """数据库是否可用。"""
        return self.conn.ping()

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_shop_info(self, shop_id: int) -> Dict[str, Any]:
        """获取店铺资料。

        Returns:
            店铺信息字典，营业时间格式为 ``HH:MM``。
        """
        shop = self.shops.get(shop_id)
        return {
            "id": shop.id,
            "name": shop.name,
            "address": shop.address,
            "owner_id": shop.owner_id,
            "subscription_status": shop.subscription_status,
            "opening_time": (
                shop.opening_time.strftime("%H:%M") if shop.opening_time else None
            ),
            "closing_time": (
                shop.closing_time.strftime("%H:%M") if shop.closing_time else None
            ),
            "queue_mode": shop.queue_mode,
        }

    def get_barber_list(self, shop_id: int) -> List[Dict[str, Any]]:
        """获取店铺理发师列表。"""
        return [
            {"id": b.id, "name": b.name, "avatar_url": b.avatar_url}
            for b in self.barbers.list_by_shop(shop_id)
        ]

    def get_service_list(self, shop_id: int) -> List[Dict[str, Any]]:
        """获取店铺服务列表。"""
        return [
            {
                "id": s.id,
                "name": s.name,
                "price": float(s.price),
                "duration_minutes": s.duration_minutes,
            }
            for s in self.services.list_by_shop(shop_id)
        ]

    def get_queue_board(self, shop_id: int,
                        now: Optional[datetime] = None,
                        show_all: bool = False) -> Dict[str, Any]:
        """获取队列看板数据。

        按理发师拆分当前队列（等待中按位置排序、进行中最多一条），
        并附带最近完成和爽约列表（默认各 5 条，按创建时间倒序）。

        Args:
            shop_id: 店铺ID。
            now: 当前时间（bounded_daily 模式计算营业窗口用）。
            show_all: 是否返回全部完成/爽约记录。

        Returns:
            看板字典，包含 barbers、unassigned、completed、no_shows。
        """
        entries = self.queue_entries.list_active(shop_id, now=now)
        limit = None if show_all else 5

        lanes = []
        for barber in self.get_barber_list(shop_id):
            mine = [e for e in entries
                    if e["barber"] and e["barber"]["id"] == barber["id"]]
            in_progress = next(
                (e for e in mine if e["status"] == STATUS_IN_PROGRESS), None
            )
            lanes.append({
                "barber": barber,
                "in_progress": in_progress,
                "waiting": [e for e in mine if e["status"] == STATUS_WAITING],
            })

        return {
            "barbers": lanes,
            "unassigned": [
                e for e in entries
                if e["barber"] is None and e["status"] == STATUS_WAITING
            ],
            "completed": self.queue_entries.list_recent(shop_id, STATUS_DONE, limit),
            "no_shows": self.queue_entries.list_recent(shop_id, STATUS_NO_SHOW, limit),
        }
