"""仪表盘读模型

仪表盘展示用的内存缓存：首次加载后由变更推送维护。

- queue_entries / queue_entry_services 变更：全量重新查询队列
- services / barbers 插入、删除：按事件数据局部修补列表
- billable_events 插入：本月计费数加 1

读模型只用于展示，排队生命周期管理不读取它。
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from database import ChangeEvent, ChangeFeed, DatabaseManager
from database.change_feed import DELETE, INSERT
from business.billing import month_start


class DashboardReadModel:
    """单个店铺的仪表盘缓存"""

    def __init__(self, db: DatabaseManager, shop_id: int,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.shop_id = shop_id
        self._clock = clock
        self._feed: Optional[ChangeFeed] = None
        self._subscription_ids: List[str] = []

        self.queue: List[Dict[str, Any]] = []
        self.barbers: List[Dict[str, Any]] = []
        self.services: List[Dict[str, Any]] = []
        self.billable_this_month = 0
        self.refetch_count = 0

    def load(self) -> "DashboardReadModel":
        """从数据库加载全部数据"""
        self.barbers = self.db.get_barber_list(self.shop_id)
        self.services = self.db.get_service_list(self.shop_id)
        self.billable_this_month = self.db.billable_events.count_since(
            self.shop_id, month_start(self._clock())
        )
        self.refetch_queue()
        return self

    def refetch_queue(self):
        self.queue = self.db.queue_entries.list_active(self.shop_id, now=self._clock())
        self.refetch_count += 1

    def attach(self, feed: Optional[ChangeFeed] = None):
        """订阅本店铺的变更推送"""
        feed = feed or self.db.feed
        subscriptions = [
            feed.subscribe(self.shop_id, "queue_entries", self._on_queue_change),
            feed.subscribe(self.shop_id, "queue_entry_services", self._on_queue_change),
            feed.subscribe(self.shop_id, "billable_events", self._on_billable,
                           events=[INSERT]),
            feed.subscribe(self.shop_id, "services", self._on_service,
                           events=[INSERT, DELETE]),
            feed.subscribe(self.shop_id, "barbers", self._on_barber,
                           events=[INSERT, DELETE]),
        ]
        self._subscription_ids = [s.id for s in subscriptions]
        self._feed = feed
        logger.debug(f"Dashboard read model attached for shop {self.shop_id}")

    def detach(self):
        """取消全部订阅"""
        if self._feed is None:
            return
        for subscription_id in self._subscription_ids:
            self._feed.unsubscribe(subscription_id)
        self._subscription_ids = []

    def _on_queue_change(self, event: ChangeEvent):
        self.refetch_queue()

    def _on_billable(self, event: ChangeEvent):
        self.billable_this_month += 1

    def _on_service(self, event: ChangeEvent):
        if event.event_type == INSERT:
            row = event.new
            self.services.append({
                "id": row["id"],
                "name": row["name"],
                "price": float(row["price"]),
                "duration_minutes": row["duration_minutes"],
            })
        else:
            self.services = [s for s in self.services if s["id"] != event.old.get("id")]

    def _on_barber(self, event: ChangeEvent):
        if event.event_type == INSERT:
            row = event.new
            self.barbers.append({
                "id": row["id"],
                "name": row["name"],
                "avatar_url": row.get("avatar_url"),
            })
        else:
            self.barbers = [b for b in self.barbers if b["id"] != event.old.get("id")]
