"""排队与计费仓库：核心业务数据的数据访问层。

管理排队记录（含与服务的关联）和计费事件。

- 排队位置按理发师划分，值越小越先服务；新顾客追加到末尾
  （当前最大位置 + 1），位置从不重排压缩。
- 排队记录的写入带乐观锁版本校验，读取后被其他会话改过的记录
  会被拒绝（``ConcurrentModification``）。
- 计费事件只追加，从不修改或删除。
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from .base_crud import BaseCRUD, row_to_dict
from .change_feed import ChangeFeed, DELETE, INSERT, UPDATE
from .connection import DatabaseConnection
from .entity_repos import BarberRepository, ServiceRepository, ShopRepository
from .exceptions import (
    ConcurrentModification, EntryNotFound, InvalidTransition, RecordNotFound
)
from .models import (
    Shop, QueueEntry, QueueEntryService, BillableEvent,
    QUEUE_MODE_BOUNDED_DAILY, QUEUE_STATUSES, STATUS_WAITING, STATUS_IN_PROGRESS,
    STATUS_NO_SHOW
)

# always_open 模式下展示的非终态
OPEN_STATUSES = (STATUS_WAITING, STATUS_IN_PROGRESS, STATUS_NO_SHOW)
# bounded_daily 模式下跨天仍展示的状态
PENDING_STATUSES = (STATUS_WAITING, STATUS_IN_PROGRESS)


def today_window(shop: Shop, now: Optional[datetime] = None
                 ) -> Optional[Tuple[datetime, datetime]]:
    """计算店铺当日营业时间窗口。

    Args:
        shop: 店铺对象。
        now: 当前时间，默认 ``datetime.now()``。

    Returns:
        (开始, 结束) 时间元组；未配置营业时间时返回 None。
    """
    if shop.opening_time is None or shop.closing_time is None:
        return None
    today = (now or datetime.now()).date()
    return (
        datetime.combine(today, shop.opening_time),
        datetime.combine(today, shop.closing_time),
    )


def entry_to_dict(entry: QueueEntry) -> Dict[str, Any]:
    """把排队记录（含理发师和服务）转换为字典。

    调用前需已加载 barber 与 service_links.service。
    """
    services = [
        {
            "id": link.service.id,
            "name": link.service.name,
            "price": float(link.service.price),
        }
        for link in entry.service_links
        if link.service is not None
    ]
    return {
        "id": entry.id,
        "shop_id": entry.shop_id,
        "client_name": entry.client_name,
        "queue_position": entry.queue_position,
        "status": entry.status,
        "version": entry.version,
        "created_at": entry.created_at,
        "barber": (
            {"id": entry.barber.id, "name": entry.barber.name}
            if entry.barber else None
        ),
        "services": services,
        "total_price": sum(s["price"] for s in services),
    }


class QueueEntryRepository(BaseCRUD):
    """排队记录 仓库。

    自动处理排队位置的分配和服务关联的创建。
    """

    def __init__(self, conn: DatabaseConnection,
                 shop_repo: ShopRepository,
                 barber_repo: BarberRepository,
                 service_repo: ServiceRepository,
                 feed: Optional[ChangeFeed] = None) -> None:
        super().__init__(conn, feed)
        self._shops = shop_repo
        self._barbers = barber_repo
        self._services = service_repo

    # ================================================================
    # 写入
    # ================================================================

    def enqueue(self, shop_id: int, client_name: str,
                barber_id: Optional[int] = None,
                service_ids: Iterable[int] = (),
                now: Optional[datetime] = None) -> QueueEntry:
        """新顾客排队（状态 waiting，位置追加到该理发师队尾）。

        Args:
            shop_id: 店铺ID。
            client_name: 顾客显示名称（必填）。
            barber_id: 指定理发师ID（可选）。
            service_ids: 选择的服务ID列表。
            now: 当前时间，默认 ``datetime.now()``。

        Returns:
            新建的 QueueEntry 对象。

        Raises:
            ValueError: 顾客名称为空。
            InvalidTransition: bounded_daily 模式下不在营业时间内。
            RecordNotFound: 店铺、理发师或服务不存在。
        """
        if client_name is None or not client_name.strip():
            raise ValueError("Client name is required")
        now = now or datetime.now()
        service_ids = list(service_ids)

        with self._get_session() as session:
            shop = self._shops.get(shop_id, session=session)
            if shop.queue_mode == QUEUE_MODE_BOUNDED_DAILY:
                window = today_window(shop, now)
                if window is None or not (window[0] <= now <= window[1]):
                    raise InvalidTransition(
                        f"Shop {shop_id} is not accepting clients right now"
                    )

            if barber_id is not None:
                if self._barbers.get_in_shop(shop_id, barber_id, session=session) is None:
                    raise RecordNotFound(f"Barber {barber_id} not found in shop {shop_id}")
            services = self._services.get_many(shop_id, service_ids, session=session)

            entry = QueueEntry(
                shop_id=shop_id,
                barber_id=barber_id,
                client_name=client_name.strip(),
                queue_position=self.next_position(shop_id, barber_id, session=session),
                status=STATUS_WAITING,
                created_at=now,
            )
            entry.service_links = [
                QueueEntryService(service_id=s.id) for s in services
            ]
            session.add(entry)
            session.commit()
            session.refresh(entry)
            new_row = row_to_dict(entry)
            link_rows = [row_to_dict(link) for link in entry.service_links]

        self._publish("queue_entries", INSERT, shop_id, new=new_row)
        for link_row in link_rows:
            self._publish("queue_entry_services", INSERT, shop_id, new=link_row)
        logger.info(
            f"Queued '{new_row['client_name']}' for barber {barber_id} "
            f"at position {new_row['queue_position']}"
        )
        return entry

    def update_entry(self, entry_id: int, expected_version: int,
                     **fields: Any) -> QueueEntry:
        """带版本校验地更新排队记录。

        Args:
            entry_id: 排队记录ID。
            expected_version: 读取时的版本号。
            **fields: 要更新的字段。

        Returns:
            更新后的 QueueEntry 对象。

        Raises:
            ValueError: 状态值无效。
            EntryNotFound: 记录不存在。
            ConcurrentModification: 版本号不一致（已被其他会话修改）。
        """
        if "status" in fields and fields["status"] not in QUEUE_STATUSES:
            raise ValueError(f"Invalid queue status: {fields['status']}")
        with self._get_session() as session:
            entry = session.get(QueueEntry, entry_id)
            if entry is None:
                raise EntryNotFound(f"Queue entry {entry_id} not found")
            if entry.version != expected_version:
                raise ConcurrentModification(
                    f"Queue entry {entry_id} was modified by another session"
                )
            old_row = row_to_dict(entry)
            for key, value in fields.items():
                setattr(entry, key, value)
            try:
                session.commit()
            except StaleDataError as e:
                session.rollback()
                raise ConcurrentModification(
                    f"Queue entry {entry_id} was modified by another session"
                ) from e
            new_row = row_to_dict(entry)

        self._publish("queue_entries", UPDATE, new_row["shop_id"],
                      new=new_row, old=old_row)
        return entry

    def delete_entry(self, entry_id: int) -> bool:
        """物理删除排队记录及其服务关联（无软删除）。

        Raises:
            EntryNotFound: 记录不存在。
        """
        with self._get_session() as session:
            entry = session.get(QueueEntry, entry_id)
            if entry is None:
                raise EntryNotFound(f"Queue entry {entry_id} not found")
            old_row = row_to_dict(entry)
            link_rows = [row_to_dict(link) for link in entry.service_links]
            session.delete(entry)
            session.commit()

        shop_id = old_row["shop_id"]
        for link_row in link_rows:
            self._publish("queue_entry_services", DELETE, shop_id, old=link_row)
        self._publish("queue_entries", DELETE, shop_id, old=old_row)
        logger.info(f"Queue entry {entry_id} deleted")
        return True

    # ================================================================
    # 查询
    # ================================================================

    def get(self, entry_id: int,
            session: Optional[Session] = None) -> Optional[QueueEntry]:
        """按ID获取排队记录。"""
        return self.get_by_id(QueueEntry, entry_id, session=session)

    def next_position(self, shop_id: int, barber_id: Optional[int],
                      session: Optional[Session] = None) -> int:
        """计算追加位置：该理发师等待/进行中记录的最大位置 + 1，没有则为 1。

        未分配理发师的记录在店铺内共享一条队列。
        """
        def _query(sess):
            query = sess.query(func.max(QueueEntry.queue_position)).filter(
                QueueEntry.shop_id == shop_id,
                QueueEntry.status.in_(PENDING_STATUSES),
            )
            if barber_id is None:
                query = query.filter(QueueEntry.barber_id.is_(None))
            else:
                query = query.filter(QueueEntry.barber_id == barber_id)
            current = query.scalar()
            return 1 if current is None else current + 1

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def min_waiting_position(self, barber_id: int,
                             exclude_entry_id: Optional[int] = None,
                             session: Optional[Session] = None
                             ) -> Optional[int]:
        """获取理发师当前等待中记录的最小位置，没有等待记录返回 None。"""
        def _query(sess):
            query = sess.query(func.min(QueueEntry.queue_position)).filter(
                QueueEntry.barber_id == barber_id,
                QueueEntry.status == STATUS_WAITING,
            )
            if exclude_entry_id is not None:
                query = query.filter(QueueEntry.id != exclude_entry_id)
            return query.scalar()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def find_in_progress(self, barber_id: int,
                         exclude_entry_id: Optional[int] = None,
                         session: Optional[Session] = None
                         ) -> Optional[QueueEntry]:
        """获取理发师正在服务的记录（最多一条）。"""
        def _query(sess):
            query = sess.query(QueueEntry).filter(
                QueueEntry.barber_id == barber_id,
                QueueEntry.status == STATUS_IN_PROGRESS,
            )
            if exclude_entry_id is not None:
                query = query.filter(QueueEntry.id != exclude_entry_id)
            return query.first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def _load_query(self, sess: Session):
        return sess.query(QueueEntry).options(
            joinedload(QueueEntry.barber),
            selectinload(QueueEntry.service_links).joinedload(
                QueueEntryService.service
            ),
        )

    def get_detail(self, entry_id: int) -> Optional[Dict[str, Any]]:
        """获取单条排队记录详情（含理发师和服务）。"""
        with self._get_session() as sess:
            entry = self._load_query(sess).filter(QueueEntry.id == entry_id).first()
            return entry_to_dict(entry) if entry else None

    def list_active(self, shop_id: int,
                    now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """获取店铺当前队列，按排队位置排序。

        - bounded_daily：今天营业时间窗口内创建的全部记录，加上任何时候
          创建但仍在等待或服务中的记录（它们会影响开始服务的判断）；
          未配置营业时间时只返回后者；
        - always_open：所有非终态记录（waiting / in_progress / no_show）。

        Returns:
            排队记录字典列表。
        """
        with self._get_session() as sess:
            shop = self._shops.get(shop_id, session=sess)
            query = self._load_query(sess).filter(QueueEntry.shop_id == shop_id)

            if shop.queue_mode == QUEUE_MODE_BOUNDED_DAILY:
                pending = QueueEntry.status.in_(PENDING_STATUSES)
                window = today_window(shop, now)
                if window is None:
                    logger.debug(f"Shop {shop_id} has no opening hours configured")
                    query = query.filter(pending)
                else:
                    query = query.filter(or_(
                        pending,
                        and_(QueueEntry.created_at >= window[0],
                             QueueEntry.created_at <= window[1]),
                    ))
            else:
                query = query.filter(QueueEntry.status.in_(OPEN_STATUSES))

            entries = query.order_by(
                QueueEntry.queue_position, QueueEntry.id
            ).all()
            return [entry_to_dict(e) for e in entries]

    def list_recent(self, shop_id: int, status: str,
                    limit: Optional[int] = 5) -> List[Dict[str, Any]]:
        """获取某状态的最近记录，按创建时间倒序。

        Args:
            shop_id: 店铺ID。
            status: 状态（通常为 done 或 no_show）。
            limit: 最多返回条数，None 表示全部。
        """
        with self._get_session() as sess:
            query = self._load_query(sess).filter(
                QueueEntry.shop_id == shop_id,
                QueueEntry.status == status,
            ).order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return [entry_to_dict(e) for e in query.all()]

    def list_between(self, shop_id: int, start: datetime, end: datetime,
                     statuses: Optional[Iterable[str]] = None
                     ) -> List[Dict[str, Any]]:
        """获取时间区间内创建的记录（用于统计）。"""
        with self._get_session() as sess:
            query = self._load_query(sess).filter(
                QueueEntry.shop_id == shop_id,
                QueueEntry.created_at >= start,
                QueueEntry.created_at <= end,
            )
            if statuses is not None:
                query = query.filter(QueueEntry.status.in_(list(statuses)))
            return [entry_to_dict(e) for e in query.order_by(QueueEntry.id).all()]


class BillableEventRepository(BaseCRUD):
    """计费事件 仓库（只追加）。"""

    def __init__(self, conn: DatabaseConnection,
                 feed: Optional[ChangeFeed] = None) -> None:
        super().__init__(conn, feed)

    def append(self, shop_id: int, queue_entry_id: int) -> BillableEvent:
        """追加一条计费事件。

        Returns:
            新建的 BillableEvent 对象。
        """
        return self.create(
            BillableEvent, shop_id=shop_id, queue_entry_id=queue_entry_id
        )

    def count_since(self, shop_id: int,
                    since: Optional[datetime] = None,
                    session: Optional[Session] = None) -> int:
        """统计店铺自某时间起的计费事件数量，since 为 None 时统计全部。"""
        def _query(sess):
            query = sess.query(func.count(BillableEvent.id)).filter(
                BillableEvent.shop_id == shop_id
            )
            if since is not None:
                query = query.filter(BillableEvent.created_at >= since)
            return query.scalar() or 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_for_entry(self, queue_entry_id: int) -> List[BillableEvent]:
        """获取某排队记录的计费事件。"""
        return self.get_all(
            BillableEvent, filters={"queue_entry_id": queue_entry_id},
            order_by=[BillableEvent.id]
        )
