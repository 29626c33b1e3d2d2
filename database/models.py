"""SQLAlchemy ORM 模型定义。

本模块定义了所有数据库表的ORM模型，包括：
- 店铺（租户根）、理发师、服务等基础实体
- 排队记录及其与服务的关联表
- 计费事件（只追加，用于按量计费）

所有时间字段均使用店铺本地时间（naive datetime），
与店铺的营业时间保持同一时区语义。
"""
from typing import List, Optional
from datetime import datetime, time
from sqlalchemy import (
    Column, Integer, String, DateTime, Time, DECIMAL, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, relationship

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解（与 SQLAlchemy 2.0 兼容）
Base.__allow_unmapped__ = True


# 排队状态
STATUS_WAITING = "waiting"
STATUS_IN_PROGRESS = "in_progress"
STATUS_DONE = "done"
STATUS_NO_SHOW = "no_show"
QUEUE_STATUSES = (STATUS_WAITING, STATUS_IN_PROGRESS, STATUS_DONE, STATUS_NO_SHOW)

# 订阅状态（None 视为试用）
SUBSCRIPTION_STATUSES = ("trial", "active", "past_due")

# 排队模式
QUEUE_MODE_BOUNDED_DAILY = "bounded_daily"
QUEUE_MODE_ALWAYS_OPEN = "always_open"
QUEUE_MODES = (QUEUE_MODE_BOUNDED_DAILY, QUEUE_MODE_ALWAYS_OPEN)


class Shop(Base):
    """店铺表模型（租户根）。

    Attributes:
        id: 主键，自增整数。
        name: 店铺名称，必填。
        address: 地址，可选。
        owner_id: 店主身份标识（来自外部身份提供方），必填且唯一。
        subscription_status: 订阅状态，trial / active / past_due / None。
        stripe_customer_id: 支付平台客户ID，可选。
        opening_time: 营业开始时间，可选。
        closing_time: 营业结束时间，可选。
        queue_mode: 排队模式，bounded_daily（按当日营业时间）/ always_open。
        created_at: 创建时间。

    Relationships:
        barbers: 店铺的理发师列表。
        services: 店铺的服务列表。
    """
    __tablename__ = "shops"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    address: Optional[str] = Column(String(200))
    owner_id: str = Column(String(100), nullable=False, unique=True)
    subscription_status: Optional[str] = Column(String(20))  # trial / active / past_due
    stripe_customer_id: Optional[str] = Column(String(100))
    opening_time: Optional[time] = Column(Time)
    closing_time: Optional[time] = Column(Time)
    queue_mode: str = Column(String(20), nullable=False, default=QUEUE_MODE_ALWAYS_OPEN)
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    barbers: List["Barber"] = relationship("Barber", back_populates="shop")
    services: List["Service"] = relationship("Service", back_populates="shop")

    @property
    def is_trial(self) -> bool:
        """订阅状态为 trial 或未设置时视为试用。"""
        return self.subscription_status in (None, "trial")


class Barber(Base):
    """理发师表模型。

    Attributes:
        id: 主键，自增整数。
        shop_id: 所属店铺ID，必填。
        name: 姓名，必填。
        avatar_url: 头像公开访问地址，可选。
        created_at: 创建时间。
    """
    __tablename__ = "barbers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    shop_id: int = Column(Integer, ForeignKey("shops.id"), nullable=False)
    name: str = Column(String(50), nullable=False)
    avatar_url: Optional[str] = Column(String(500))
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    shop: "Shop" = relationship("Shop", back_populates="barbers")
    queue_entries: List["QueueEntry"] = relationship(
        "QueueEntry", back_populates="barber", passive_deletes="all"
    )


class Service(Base):
    """服务项目表模型。

    Attributes:
        id: 主键，自增整数。
        shop_id: 所属店铺ID，必填。
        name: 服务名称，必填。
        price: 价格，DECIMAL(10,2)，必填。
        duration_minutes: 预计时长（分钟），必填。
        created_at: 创建时间。
    """
    __tablename__ = "services"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    shop_id: int = Column(Integer, ForeignKey("shops.id"), nullable=False)
    name: str = Column(String(100), nullable=False)
    price: float = Column(DECIMAL(10, 2), nullable=False)
    duration_minutes: int = Column(Integer, nullable=False)
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    shop: "Shop" = relationship("Shop", back_populates="services")


class QueueEntry(Base):
    """排队记录表模型（核心可变实体）。

    queue_position 是按理发师划分的排序键，值越小越先服务，
    不保证连续，重新排队后可能为负数。

    version 列用于乐观并发控制：每次更新都会校验并递增，
    读取后被其他会话修改过的记录在提交时会被拒绝。

    Attributes:
        id: 主键，自增整数。
        shop_id: 所属店铺ID，必填。
        barber_id: 分配的理发师ID，可选。
        client_name: 顾客显示名称，必填。
        queue_position: 排队位置，必填。
        status: 状态，waiting / in_progress / done / no_show。
        version: 乐观锁版本号。
        created_at: 创建时间。

    Relationships:
        barber: 分配的理发师。
        service_links: 关联的服务（通过 queue_entry_services）。
    """
    __tablename__ = "queue_entries"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    shop_id: int = Column(Integer, ForeignKey("shops.id"), nullable=False)
    barber_id: Optional[int] = Column(Integer, ForeignKey("barbers.id"))
    client_name: str = Column(String(100), nullable=False)
    queue_position: int = Column(Integer, nullable=False)
    status: str = Column(String(20), nullable=False, default=STATUS_WAITING)
    version: int = Column(Integer, nullable=False)
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    barber: Optional["Barber"] = relationship("Barber", back_populates="queue_entries")
    service_links: List["QueueEntryService"] = relationship(
        "QueueEntryService",
        back_populates="queue_entry",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_queue_entries_shop_status", "shop_id", "status"),
        Index("ix_queue_entries_barber_status", "barber_id", "status"),
    )


class QueueEntryService(Base):
    """排队记录与服务的关联表模型。

    排队记录被删除时关联行一并删除；被引用的服务不可删除。
    """
    __tablename__ = "queue_entry_services"

    queue_entry_id: int = Column(
        Integer, ForeignKey("queue_entries.id", ondelete="CASCADE"), primary_key=True
    )
    service_id: int = Column(Integer, ForeignKey("services.id"), primary_key=True)

    # Relationships
    queue_entry: "QueueEntry" = relationship("QueueEntry", back_populates="service_links")
    service: "Service" = relationship("Service")


class BillableEvent(Base):
    """计费事件表模型（只追加）。

    每条排队记录进入 done 状态时追加一条，是按量计费的唯一依据。
    本系统从不修改或删除计费事件；排队记录被删除后
    queue_entry_id 由数据库置空。

    Attributes:
        id: 主键，自增整数。
        shop_id: 所属店铺ID，必填。
        queue_entry_id: 对应的排队记录ID，可为空。
        created_at: 创建时间。
    """
    __tablename__ = "billable_events"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    shop_id: int = Column(Integer, ForeignKey("shops.id"), nullable=False)
    queue_entry_id: Optional[int] = Column(
        Integer, ForeignKey("queue_entries.id", ondelete="SET NULL")
    )
    created_at: datetime = Column(DateTime, default=datetime.now, index=True)
