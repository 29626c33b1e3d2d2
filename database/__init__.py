"""数据库模块：店铺、理发师、服务、排队记录和计费事件的持久化。

统一入口为 ``DatabaseManager``::

    from database import DatabaseManager

    db = DatabaseManager("sqlite:///data/queuedesk.db")
    db.create_tables()
"""
from .change_feed import ChangeEvent, ChangeFeed
from .manager import DatabaseManager

__all__ = ["ChangeEvent", "ChangeFeed", "DatabaseManager"]
