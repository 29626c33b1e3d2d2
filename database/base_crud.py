"""通用 CRUD 基类。

为所有仓库提供统一的会话管理和基础操作：
按ID查询、带过滤/排序的列表查询、计数、插入、按ID更新、按ID删除。

会话约定（与各仓库一致）：
- 传入 ``session`` 时在该会话内执行，不提交、不发布变更通知，
  由调用方负责提交；
- 未传入时自行打开会话、提交，并在提交成功后发布变更通知。

数据库不可用（连接失败等）统一转换为 ``StoreUnavailable``。
"""
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Type

from loguru import logger
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .change_feed import ChangeEvent, ChangeFeed, DELETE, INSERT, UPDATE
from .connection import DatabaseConnection
from .exceptions import StoreUnavailable


def row_to_dict(obj: Any) -> Dict[str, Any]:
    """把 ORM 对象的列值转换为字典（Decimal 转为 float）。"""
    data = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.key)
        if isinstance(value, Decimal):
            value = float(value)
        data[column.key] = value
    return data


class BaseCRUD:
    """通用 CRUD 基类。

    Attributes:
        conn: 数据库连接管理器。
        feed: 变更推送中心（可选），为 None 时不发布通知。
    """

    def __init__(self, conn: DatabaseConnection,
                 feed: Optional[ChangeFeed] = None) -> None:
        self.conn = conn
        self.feed = feed

    @contextmanager
    def _get_session(self) -> Iterator[Session]:
        """打开一个会话，结束时关闭。

        Raises:
            StoreUnavailable: 数据库连接或执行失败。
        """
        session = self.conn.get_session()
        try:
            yield session
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            logger.error(f"Store call failed: {e}")
            raise StoreUnavailable(str(e.orig or e)) from e
        finally:
            session.close()

    def _publish(self, table: str, event_type: str, shop_id: Optional[int],
                 new: Optional[Dict[str, Any]] = None,
                 old: Optional[Dict[str, Any]] = None) -> None:
        if self.feed is None or shop_id is None:
            return
        self.feed.publish(ChangeEvent(
            table=table,
            event_type=event_type,
            shop_id=shop_id,
            new=new or {},
            old=old or {},
        ))

    @staticmethod
    def _shop_id_of(obj: Any) -> Optional[int]:
        if obj.__tablename__ == "shops":
            return obj.id
        return getattr(obj, "shop_id", None)

    def get_by_id(self, model: Type, record_id: int,
                  session: Optional[Session] = None) -> Optional[Any]:
        """按主键查询。

        Args:
            model: ORM 模型类。
            record_id: 主键ID。

        Returns:
            ORM 对象，不存在返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type, filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[List[Any]] = None,
                limit: Optional[int] = None,
                session: Optional[Session] = None) -> List[Any]:
        """带等值过滤和排序的列表查询。

        Args:
            model: ORM 模型类。
            filters: 字段名 -> 值 的等值过滤条件。
            order_by: 排序表达式列表。
            limit: 最多返回条数。

        Returns:
            ORM 对象列表。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by:
                query = query.order_by(*order_by)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count(self, model: Type, filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """按等值过滤条件计数。"""
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, model: Type, session: Optional[Session] = None,
               **fields: Any) -> Any:
        """插入一条记录。

        Returns:
            新建的 ORM 对象（已刷新主键）。
        """
        def _do(sess):
            obj = model(**fields)
            sess.add(obj)
            sess.flush()
            sess.refresh(obj)
            return obj

        if session:
            return _do(session)

        with self._get_session() as sess:
            obj = _do(sess)
            sess.commit()
        self._publish(model.__tablename__, INSERT, self._shop_id_of(obj),
                      new=row_to_dict(obj))
        return obj

    def update_by_id(self, model: Type, record_id: int,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[Any]:
        """按主键更新指定字段。

        Returns:
            更新后的 ORM 对象，记录不存在返回 None。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None, None
            old = row_to_dict(obj)
            for key, value in fields.items():
                setattr(obj, key, value)
            sess.flush()
            sess.refresh(obj)
            return obj, old

        if session:
            return _do(session)[0]

        with self._get_session() as sess:
            obj, old = _do(sess)
            if obj is None:
                return None
            sess.commit()
        self._publish(model.__tablename__, UPDATE, self._shop_id_of(obj),
                      new=row_to_dict(obj), old=old)
        return obj

    def delete_by_id(self, model: Type, record_id: int,
                     session: Optional[Session] = None) -> bool:
        """按主键删除（物理删除）。

        Returns:
            记录存在并被删除时返回 True。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            old = row_to_dict(obj)
            sess.delete(obj)
            sess.flush()
            return old

        if session:
            return _do(session) is not None

        with self._get_session() as sess:
            old = _do(sess)
            if old is None:
                return False
            sess.commit()
        shop_id = old.get("shop_id") if model.__tablename__ != "shops" else old.get("id")
        self._publish(model.__tablename__, DELETE, shop_id, old=old)
        return True
