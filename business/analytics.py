"""经营统计

按时间范围（today / week / month / all_time）汇总店铺数据：
总收入、完成顾客数、爽约率，以及每位理发师的收入和服务人数。

数据来源：
- local：直接查询本地数据库汇总（默认）
- remote：调用云函数 get-analytics-data
"""
import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from database import DatabaseManager
from database.exceptions import FunctionInvocationError
from database.models import STATUS_DONE, STATUS_NO_SHOW
from business.functions_client import FunctionsClient

ANALYTICS_RANGES = ("today", "week", "month", "all_time")
ANALYTICS_SOURCES = ("local", "remote")

EPOCH = datetime(1970, 1, 1)


def _one_month_before(now: datetime) -> datetime:
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def resolve_range(range_name: str, now: datetime) -> Tuple[datetime, datetime]:
    """把范围名称转换为 (开始, 结束) 时间

    - today：当天零点起
    - week：最近 7 天
    - month：上个月的同一时刻起（月底日期向前取整）
    - all_time：全部

    Raises:
        ValueError: 未知的范围名称
    """
    if range_name == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elif range_name == "week":
        start = now - timedelta(days=7)
    elif range_name == "month":
        start = _one_month_before(now)
    elif range_name == "all_time":
        start = EPOCH
    else:
        raise ValueError(
            f"Invalid analytics range: {range_name}, expected one of {ANALYTICS_RANGES}"
        )
    return start, now


@dataclass
class AnalyticsReport:
    """统计结果"""
    range: str
    start: datetime
    end: datetime
    total_revenue: float = 0.0
    total_customers: int = 0
    no_show_rate: float = 0.0
    barber_revenue: List[Dict[str, Any]] = field(default_factory=list)
    barber_clients: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "range": self.range,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_revenue": self.total_revenue,
            "total_customers": self.total_customers,
            "no_show_rate": self.no_show_rate,
            "barber_revenue": self.barber_revenue,
            "barber_clients": self.barber_clients,
        }


class AnalyticsAggregator:
    """统计汇总服务"""

    def __init__(self, db: DatabaseManager,
                 functions: Optional[FunctionsClient] = None,
                 source: str = "local",
                 clock: Callable[[], datetime] = datetime.now):
        if source not in ANALYTICS_SOURCES:
            raise ValueError(f"Invalid analytics source: {source}")
        self.db = db
        self.functions = functions
        self.source = source
        self._clock = clock

    def report(self, shop_id: int, range_name: str = "today") -> AnalyticsReport:
        """生成店铺统计

        Raises:
            ValueError: 范围名称无效
            RecordNotFound: 店铺不存在
            FunctionInvocationError: remote 模式下云函数调用失败
        """
        start, end = resolve_range(range_name, self._clock())
        self.db.shops.get(shop_id)
        if self.source == "remote":
            return self._remote(shop_id, range_name, start, end)
        return self._local(shop_id, range_name, start, end)

    def _local(self, shop_id: int, range_name: str,
               start: datetime, end: datetime) -> AnalyticsReport:
        entries = self.db.queue_entries.list_between(
            shop_id, start, end, statuses=(STATUS_DONE, STATUS_NO_SHOW)
        )
        done = [e for e in entries if e["status"] == STATUS_DONE]
        no_shows = len(entries) - len(done)

        # 所有理发师都出现在结果里，没有数据的记 0
        barbers = self.db.get_barber_list(shop_id)
        revenue = {b["id"]: 0.0 for b in barbers}
        clients = {b["id"]: 0 for b in barbers}
        for entry in done:
            barber = entry["barber"]
            if barber is None:
                continue
            revenue[barber["id"]] = revenue.get(barber["id"], 0.0) + entry["total_price"]
            clients[barber["id"]] = clients.get(barber["id"], 0) + 1

        finished = len(entries)
        return AnalyticsReport(
            range=range_name,
            start=start,
            end=end,
            total_revenue=round(sum(e["total_price"] for e in done), 2),
            total_customers=len(done),
            no_show_rate=round(no_shows / finished * 100, 1) if finished else 0.0,
            barber_revenue=[
                {"name": b["name"], "revenue": round(revenue[b["id"]], 2)}
                for b in barbers
            ],
            barber_clients=[
                {"name": b["name"], "clients": clients[b["id"]]}
                for b in barbers
            ],
        )

    def _remote(self, shop_id: int, range_name: str,
                start: datetime, end: datetime) -> AnalyticsReport:
        if self.functions is None:
            raise FunctionInvocationError("Analytics functions endpoint is not configured")

        data = self.functions.invoke("get-analytics-data", {
            "shop_id": shop_id,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
        })
        logger.debug(f"Remote analytics loaded for shop {shop_id} ({range_name})")
        return AnalyticsReport(
            range=range_name,
            start=start,
            end=end,
            total_revenue=float(data.get("totalRevenue") or 0),
            total_customers=int(data.get("totalCustomers") or 0),
            no_show_rate=float(data.get("noShowRate") or 0),
            barber_revenue=list(data.get("barberRevenueData") or []),
            barber_clients=list(data.get("barberClientData") or []),
        )
