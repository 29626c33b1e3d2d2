"""变更推送：按店铺划分的行级变更通知。

仓库在提交成功后发布 ``ChangeEvent``，订阅方（仪表盘读模型、
Web 会话等）按店铺和表订阅，收到插入/更新/删除通知后
自行决定全量刷新或局部修补本地缓存。

推送只是通知，不是事实来源：任何决策都应重新读取数据库。
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from loguru import logger

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)


@dataclass
class ChangeEvent:
    """行级变更事件

    Attributes:
        table: 表名（如 queue_entries）
        event_type: INSERT / UPDATE / DELETE
        shop_id: 所属店铺ID
        new: 变更后的行数据（DELETE 时为空）
        old: 变更前的行数据（INSERT 时为空）
        timestamp: 事件产生时间
    """
    table: str
    event_type: str
    shop_id: int
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


ChangeHandler = Callable[[ChangeEvent], None]


@dataclass
class Subscription:
    """一个订阅：店铺 + 表 + 可选的事件类型过滤"""
    id: str
    shop_id: int
    table: str
    handler: ChangeHandler
    events: Optional[FrozenSet[str]] = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.shop_id != self.shop_id or event.table != self.table:
            return False
        return self.events is None or event.event_type in self.events


class ChangeFeed:
    """变更推送中心

    使用方式：
        ```python
        feed = ChangeFeed()
        sub = feed.subscribe(shop.id, "queue_entries", on_change)
        ...
        feed.unsubscribe(sub.id)
        ```
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, shop_id: int, table: str, handler: ChangeHandler,
                  events: Optional[Iterable[str]] = None) -> Subscription:
        """订阅某店铺某张表的变更

        Args:
            shop_id: 店铺ID
            table: 表名
            handler: 回调函数，接收 ChangeEvent
            events: 只关心的事件类型，None 表示全部

        Returns:
            订阅对象，其 id 可用于取消订阅
        """
        event_filter = None
        if events is not None:
            event_filter = frozenset(events)
            unknown = event_filter - set(EVENT_TYPES)
            if unknown:
                raise ValueError(f"Unknown event types: {sorted(unknown)}")

        subscription = Subscription(
            id=uuid.uuid4().hex,
            shop_id=shop_id,
            table=table,
            handler=handler,
            events=event_filter,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscribed {subscription.id} to {table} for shop {shop_id}")
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        """取消订阅

        Returns:
            订阅存在并被移除时返回 True
        """
        with self._lock:
            removed = self._subscriptions.pop(subscription_id, None)
        return removed is not None

    def publish(self, event: ChangeEvent) -> int:
        """向匹配的订阅方投递事件

        单个回调出错只记录日志，不影响其他订阅方。

        Returns:
            成功投递的订阅数量
        """
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.matches(event)]

        delivered = 0
        for subscription in targets:
            try:
                subscription.handler(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change handler {subscription.id} failed on "
                    f"{event.table} {event.event_type}: {e}"
                )
        return delivered

    def subscriptions_for(self, shop_id: int) -> List[Subscription]:
        """列出某店铺的全部订阅"""
        with self._lock:
            return [s for s in self._subscriptions.values() if s.shop_id == shop_id]
