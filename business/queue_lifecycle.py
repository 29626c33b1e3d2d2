"""排队生命周期管理

负责排队记录的状态流转、按理发师的排队顺序和完成服务时的计费副作用::

    waiting --advance--> in_progress --complete--> done
    waiting --mark_no_show--> no_show --requeue--> waiting
    任意状态 --delete--> [删除]

每个操作都按ID重新读取数据库，不使用任何缓存快照；
操作内部不做重试，失败直接抛给调用方。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from database import DatabaseManager
from database.exceptions import (
    EntryNotFound, InvalidTransition, NoBarberAssigned, QueueDeskError,
    RecordNotFound, TrialExhausted
)
from database.models import (
    QueueEntry, STATUS_DONE, STATUS_IN_PROGRESS, STATUS_NO_SHOW, STATUS_WAITING
)
from business.billing import UsagePolicy


@dataclass
class TransitionResult:
    """状态流转结果

    Attributes:
        entry_id: 排队记录ID
        status: 流转后的状态
        queue_position: 流转后的排队位置
        barber_id: 流转后的理发师ID
        version: 流转后的版本号
        billable_event_id: 完成服务时追加的计费事件ID
        warning: 非致命警告（计费事件写入失败时）
    """
    entry_id: int
    status: str
    queue_position: int
    barber_id: Optional[int]
    version: int
    billable_event_id: Optional[int] = None
    warning: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: QueueEntry, **extra: Any) -> "TransitionResult":
        return cls(
            entry_id=entry.id,
            status=entry.status,
            queue_position=entry.queue_position,
            barber_id=entry.barber_id,
            version=entry.version,
            **extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.entry_id,
            "status": self.status,
            "queue_position": self.queue_position,
            "barber_id": self.barber_id,
            "version": self.version,
        }
        if self.billable_event_id is not None:
            data["billable_event_id"] = self.billable_event_id
        if self.warning:
            data["warning"] = self.warning
        return data


class QueueLifecycleManager:
    """排队生命周期管理器"""

    def __init__(self, db: DatabaseManager,
                 policy: Optional[UsagePolicy] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            db: 数据库管理器
            policy: 试用额度策略，默认读取全局配置
            clock: 当前时间来源（测试时可替换）
        """
        self.db = db
        self.policy = policy or UsagePolicy.from_settings()
        self._clock = clock

    def _load(self, entry_id: int) -> QueueEntry:
        entry = self.db.queue_entries.get(entry_id)
        if entry is None:
            raise EntryNotFound(f"Queue entry {entry_id} not found")
        return entry

    @staticmethod
    def _require_status(entry: QueueEntry, expected: str, action: str):
        if entry.status != expected:
            raise InvalidTransition(
                f"Cannot {action} entry {entry.id}: status is {entry.status}, "
                f"expected {expected}"
            )

    def _check_trial(self, shop_id: int):
        shop = self.db.shops.get(shop_id)
        if not shop.is_trial:
            return
        since = self.policy.period_start(self._clock())
        used = self.db.billable_events.count_since(shop_id, since)
        if self.policy.is_exhausted(used):
            raise TrialExhausted(
                f"Shop {shop_id} has used its {self.policy.allotment} trial clients"
            )

    def advance(self, entry_id: int) -> TransitionResult:
        """开始服务：waiting -> in_progress

        Raises:
            EntryNotFound: 记录不存在
            InvalidTransition: 状态不是 waiting，或该理发师已有进行中的顾客
            TrialExhausted: 试用额度已用完
            ConcurrentModification: 记录在读取之后被修改
        """
        entry = self._load(entry_id)
        self._require_status(entry, STATUS_WAITING, "start")

        if entry.barber_id is not None:
            busy = self.db.queue_entries.find_in_progress(
                entry.barber_id, exclude_entry_id=entry.id
            )
            if busy is not None:
                raise InvalidTransition(
                    f"Barber {entry.barber_id} is already serving entry {busy.id}"
                )

        self._check_trial(entry.shop_id)

        updated = self.db.queue_entries.update_entry(
            entry.id, entry.version, status=STATUS_IN_PROGRESS
        )
        logger.info(f"Entry {entry_id} ({updated.client_name}) started")
        return TransitionResult.from_entry(updated)

    def complete(self, entry_id: int) -> TransitionResult:
        """完成服务：in_progress -> done，并追加一条计费事件

        计费事件与状态更新是两次独立写入：计费写入失败只记录警告，
        状态照常更新；状态更新失败时异常上抛，已写入的计费事件不回滚。

        Raises:
            EntryNotFound: 记录不存在
            InvalidTransition: 状态不是 in_progress
            StoreUnavailable: 状态更新时数据库不可用
        """
        entry = self._load(entry_id)
        self._require_status(entry, STATUS_IN_PROGRESS, "complete")

        event_id = None
        warning = None
        try:
            event = self.db.billable_events.append(entry.shop_id, entry.id)
            event_id = event.id
        except (QueueDeskError, SQLAlchemyError) as e:
            warning = f"Billing event for entry {entry_id} was not recorded: {e}"
            logger.warning(warning)

        updated = self.db.queue_entries.update_entry(
            entry.id, entry.version, status=STATUS_DONE
        )
        logger.info(f"Entry {entry_id} ({updated.client_name}) completed")
        return TransitionResult.from_entry(
            updated, billable_event_id=event_id, warning=warning
        )

    def mark_no_show(self, entry_id: int) -> TransitionResult:
        """标记爽约：waiting -> no_show，排队位置不变，不计费

        Raises:
            EntryNotFound: 记录不存在
            InvalidTransition: 状态不是 waiting
        """
        entry = self._load(entry_id)
        self._require_status(entry, STATUS_WAITING, "mark no-show for")

        updated = self.db.queue_entries.update_entry(
            entry.id, entry.version, status=STATUS_NO_SHOW
        )
        logger.info(f"Entry {entry_id} ({updated.client_name}) marked as no-show")
        return TransitionResult.from_entry(updated)

    def requeue(self, entry_id: int,
                allow_any_status: bool = False) -> TransitionResult:
        """重新排队：no_show -> waiting，排到该理发师队首

        新位置为该理发师其他等待记录的最小位置减 1，没有等待记录时为 1。
        多次重新排队后位置可能为负数。

        Args:
            entry_id: 排队记录ID
            allow_any_status: 为 True 时不校验当前状态（由调用方决定）

        Raises:
            EntryNotFound: 记录不存在
            NoBarberAssigned: 记录没有分配理发师
            InvalidTransition: 状态不是 no_show
        """
        entry = self._load(entry_id)
        if entry.barber_id is None:
            raise NoBarberAssigned(f"Queue entry {entry_id} has no barber assigned")
        if not allow_any_status:
            self._require_status(entry, STATUS_NO_SHOW, "requeue")

        lowest = self.db.queue_entries.min_waiting_position(
            entry.barber_id, exclude_entry_id=entry.id
        )
        position = 1 if lowest is None else lowest - 1

        updated = self.db.queue_entries.update_entry(
            entry.id, entry.version, status=STATUS_WAITING, queue_position=position
        )
        logger.info(
            f"Entry {entry_id} ({updated.client_name}) requeued at position {position}"
        )
        return TransitionResult.from_entry(updated)

    def reassign(self, entry_id: int, new_barber_id: int) -> TransitionResult:
        """修改理发师，排队位置和状态不变

        Raises:
            EntryNotFound: 记录不存在
            NoBarberAssigned: 记录原本没有分配理发师
            RecordNotFound: 新理发师不存在或不属于同一店铺
        """
        entry = self._load(entry_id)
        if entry.barber_id is None:
            raise NoBarberAssigned(f"Queue entry {entry_id} has no barber assigned")
        if self.db.barbers.get_in_shop(entry.shop_id, new_barber_id) is None:
            raise RecordNotFound(
                f"Barber {new_barber_id} not found in shop {entry.shop_id}"
            )

        updated = self.db.queue_entries.update_entry(
            entry.id, entry.version, barber_id=new_barber_id
        )
        logger.info(f"Entry {entry_id} reassigned to barber {new_barber_id}")
        return TransitionResult.from_entry(updated)

    def delete(self, entry_id: int) -> bool:
        """物理删除排队记录（无软删除），服务关联一并删除

        Raises:
            EntryNotFound: 记录不存在
        """
        return self.db.queue_entries.delete_entry(entry_id)
