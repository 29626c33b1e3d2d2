"""实体仓库：基础实体的数据访问层。

管理系统中的基础实体（店铺、理发师、服务项目）。
店铺是租户根，理发师和服务都归属于唯一的店铺。

每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
被历史排队记录引用的理发师/服务不可删除（拒绝而不是级联）。
"""
from datetime import datetime, time
from typing import Any, Iterable, List, Optional, Union

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .change_feed import ChangeFeed
from .connection import DatabaseConnection
from .exceptions import DependencyInUse, RecordNotFound
from .models import (
    Shop, Barber, Service, QueueEntry, QueueEntryService,
    QUEUE_MODES, SUBSCRIPTION_STATUSES
)


def parse_time_of_day(value: Union[str, time, None]) -> Optional[time]:
    """解析营业时间。

    Args:
        value: ``HH:MM`` / ``HH:MM:SS`` 字符串、time 对象或 None。

    Returns:
        time 对象或 None。

    Raises:
        ValueError: 格式无效。
    """
    if value is None or isinstance(value, time):
        return value
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value}, expected HH:MM")


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} is required")
    return str(value).strip()


class ShopRepository(BaseCRUD):
    """店铺 仓库。

    管理店铺信息、营业时间、排队模式和订阅状态。
    """

    UPDATABLE_FIELDS = (
        "name", "address", "opening_time", "closing_time", "queue_mode"
    )

    def __init__(self, conn: DatabaseConnection,
                 feed: Optional[ChangeFeed] = None) -> None:
        super().__init__(conn, feed)

    def create(self, name: str, owner_id: str,
               address: Optional[str] = None,
               opening_time: Union[str, time, None] = None,
               closing_time: Union[str, time, None] = None,
               queue_mode: str = "always_open",
               subscription_status: Optional[str] = "trial") -> Shop:
        """创建店铺。

        Args:
            name: 店铺名称（必填）。
            owner_id: 店主身份标识（必填，唯一）。
            address: 地址。
            opening_time: 营业开始时间。
            closing_time: 营业结束时间。
            queue_mode: 排队模式。
            subscription_status: 订阅状态，默认 trial。

        Returns:
            新建的 Shop 对象。

        Raises:
            ValueError: 必填字段缺失或取值无效。
        """
        self._validate_queue_mode(queue_mode)
        self._validate_subscription_status(subscription_status)
        opening = parse_time_of_day(opening_time)
        closing = parse_time_of_day(closing_time)
        self._validate_hours(opening, closing)

        return super().create(
            Shop,
            name=_require_text(name, "Shop name"),
            owner_id=_require_text(owner_id, "Owner id"),
            address=address,
            opening_time=opening,
            closing_time=closing,
            queue_mode=queue_mode,
            subscription_status=subscription_status,
        )

    def get(self, shop_id: int, session: Optional[Session] = None) -> Shop:
        """按ID获取店铺。

        Raises:
            RecordNotFound: 店铺不存在。
        """
        shop = self.get_by_id(Shop, shop_id, session=session)
        if shop is None:
            raise RecordNotFound(f"Shop {shop_id} not found")
        return shop

    def get_by_owner(self, owner_id: str,
                     session: Optional[Session] = None) -> Optional[Shop]:
        """按店主身份获取店铺。

        Returns:
            Shop 对象，不存在返回 None。
        """
        shops = self.get_all(Shop, filters={"owner_id": owner_id},
                             limit=1, session=session)
        return shops[0] if shops else None

    def list_all(self, session: Optional[Session] = None) -> List[Shop]:
        """获取全部店铺。"""
        return self.get_all(Shop, order_by=[Shop.id], session=session)

    def update_details(self, shop_id: int, **changes: Any) -> Shop:
        """更新店铺资料（名称、地址、营业时间、排队模式）。

        只更新传入的字段；营业时间传 None 表示清除。

        Raises:
            ValueError: 字段不允许修改或取值无效。
            RecordNotFound: 店铺不存在。
        """
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        if "name" in changes:
            changes["name"] = _require_text(changes["name"], "Shop name")
        if "queue_mode" in changes:
            self._validate_queue_mode(changes["queue_mode"])
        for key in ("opening_time", "closing_time"):
            if key in changes:
                changes[key] = parse_time_of_day(changes[key])

        current = self.get(shop_id)
        self._validate_hours(
            changes.get("opening_time", current.opening_time),
            changes.get("closing_time", current.closing_time),
        )

        shop = self.update_by_id(Shop, shop_id, **changes)
        if shop is None:
            raise RecordNotFound(f"Shop {shop_id} not found")
        logger.info(f"Shop {shop_id} updated: {sorted(changes)}")
        return shop

    def set_subscription_status(self, shop_id: int,
                                status: Optional[str],
                                stripe_customer_id: Optional[str] = None) -> Shop:
        """设置订阅状态（由支付回调同步）。

        Args:
            shop_id: 店铺ID。
            status: 订阅状态。
            stripe_customer_id: 支付平台客户ID，提供时一并保存。
        """
        self._validate_subscription_status(status)
        changes = {"subscription_status": status}
        if stripe_customer_id is not None:
            changes["stripe_customer_id"] = stripe_customer_id
        shop = self.update_by_id(Shop, shop_id, **changes)
        if shop is None:
            raise RecordNotFound(f"Shop {shop_id} not found")
        return shop

    @staticmethod
    def _validate_queue_mode(queue_mode: str) -> None:
        if queue_mode not in QUEUE_MODES:
            raise ValueError(
                f"Invalid queue mode: {queue_mode}, expected one of {QUEUE_MODES}"
            )

    @staticmethod
    def _validate_subscription_status(status: Optional[str]) -> None:
        if status is not None and status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid subscription status: {status}")

    @staticmethod
    def _validate_hours(opening: Optional[time], closing: Optional[time]) -> None:
        if opening is not None and closing is not None and closing <= opening:
            raise ValueError("Closing time must be after opening time")


class BarberRepository(BaseCRUD):
    """理发师 仓库。"""

    def __init__(self, conn: DatabaseConnection,
                 feed: Optional[ChangeFeed] = None) -> None:
        super().__init__(conn, feed)

    def create(self, shop_id: int, name: str,
               avatar_url: Optional[str] = None) -> Barber:
        """添加理发师。

        Raises:
            ValueError: 姓名为空。
        """
        return super().create(
            Barber,
            shop_id=shop_id,
            name=_require_text(name, "Barber name"),
            avatar_url=avatar_url,
        )

    def list_by_shop(self, shop_id: int,
                     session: Optional[Session] = None) -> List[Barber]:
        """按创建顺序列出店铺的理发师。"""
        return self.get_all(
            Barber, filters={"shop_id": shop_id},
            order_by=[Barber.created_at, Barber.id], session=session
        )

    def get_in_shop(self, shop_id: int, barber_id: int,
                    session: Optional[Session] = None) -> Optional[Barber]:
        """获取属于指定店铺的理发师，不属于该店铺时返回 None。"""
        barber = self.get_by_id(Barber, barber_id, session=session)
        if barber is None or barber.shop_id != shop_id:
            return None
        return barber

    def delete(self, barber_id: int) -> bool:
        """删除理发师。

        Raises:
            DependencyInUse: 仍有排队记录引用该理发师。
            RecordNotFound: 理发师不存在。
        """
        references = self.count(QueueEntry, filters={"barber_id": barber_id})
        if references:
            raise DependencyInUse(
                f"Barber {barber_id} is referenced by {references} queue entries"
            )
        try:
            deleted = self.delete_by_id(Barber, barber_id)
        except IntegrityError as e:
            raise DependencyInUse(f"Barber {barber_id} is still referenced") from e
        if not deleted:
            raise RecordNotFound(f"Barber {barber_id} not found")
        return True


class ServiceRepository(BaseCRUD):
    """服务项目 仓库。"""

    def __init__(self, conn: DatabaseConnection,
                 feed: Optional[ChangeFeed] = None) -> None:
        super().__init__(conn, feed)

    def create(self, shop_id: int, name: str, price: float,
               duration_minutes: int) -> Service:
        """添加服务项目。

        Raises:
            ValueError: 名称为空、价格为负或时长不为正。
        """
        if price is None or float(price) < 0:
            raise ValueError("Service price must be zero or positive")
        if duration_minutes is None or int(duration_minutes) <= 0:
            raise ValueError("Service duration must be positive")
        return super().create(
            Service,
            shop_id=shop_id,
            name=_require_text(name, "Service name"),
            price=price,
            duration_minutes=int(duration_minutes),
        )

    def list_by_shop(self, shop_id: int,
                     session: Optional[Session] = None) -> List[Service]:
        """按创建顺序列出店铺的服务。"""
        return self.get_all(
            Service, filters={"shop_id": shop_id},
            order_by=[Service.created_at, Service.id], session=session
        )

    def get_many(self, shop_id: int, service_ids: Iterable[int],
                 session: Optional[Session] = None) -> List[Service]:
        """批量获取属于指定店铺的服务。

        Raises:
            RecordNotFound: 任一服务不存在或不属于该店铺。
        """
        wanted = set(service_ids)
        if not wanted:
            return []

        def _query(sess):
            return sess.query(Service).filter(
                Service.shop_id == shop_id, Service.id.in_(wanted)
            ).all()

        if session:
            services = _query(session)
        else:
            with self._get_session() as sess:
                services = _query(sess)

        missing = wanted - {s.id for s in services}
        if missing:
            raise RecordNotFound(f"Services not found: {sorted(missing)}")
        return services

    def delete(self, service_id: int) -> bool:
        """删除服务项目。

        Raises:
            DependencyInUse: 仍有排队记录关联该服务。
            RecordNotFound: 服务不存在。
        """
        references = self.count(
            QueueEntryService, filters={"service_id": service_id}
        )
        if references:
            raise DependencyInUse(
                f"Service {service_id} is linked to {references} queue entries"
            )
        try:
            deleted = self.delete_by_id(Service, service_id)
        except IntegrityError as e:
            raise DependencyInUse(f"Service {service_id} is still referenced") from e
        if not deleted:
            raise RecordNotFound(f"Service {service_id} not found")
        return True
