"""计费与用量

按量计费以计费事件（billable_events）为唯一依据：
- 试用期（订阅状态为 trial 或未设置）有固定的免费顾客额度，
  额度用完后不能再开始新的服务；
- 正式订阅按每位完成的顾客计价；
- 账单门户由支付平台提供，通过云函数 create-stripe-portal 创建会话。
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from database.exceptions import FunctionInvocationError
from business.functions_client import FunctionsClient

USAGE_WINDOWS = ("month", "lifetime")


def month_start(now: datetime) -> datetime:
    """当月第一天零点"""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class UsagePolicy:
    """试用额度与计价策略

    Attributes:
        allotment: 试用期免费顾客数量
        window: 试用用量统计范围，month（当月）/ lifetime（全部）
        price_per_client: 每位完成顾客的价格
    """
    allotment: int = 100
    window: str = "month"
    price_per_client: float = 0.25

    def __post_init__(self):
        if self.window not in USAGE_WINDOWS:
            raise ValueError(f"Invalid usage window: {self.window}")

    @classmethod
    def from_settings(cls) -> "UsagePolicy":
        return cls(
            allotment=settings.trial_client_allotment,
            window=settings.trial_usage_window,
            price_per_client=settings.price_per_client,
        )

    def period_start(self, now: datetime) -> Optional[datetime]:
        """试用用量的统计起点，lifetime 时为 None（不限起点）"""
        return month_start(now) if self.window == "month" else None

    def trial_remaining(self, used: int) -> int:
        return max(0, self.allotment - used)

    def is_exhausted(self, used: int) -> bool:
        return used >= self.allotment


@dataclass
class UsageSummary:
    """店铺用量概览"""
    shop_id: int
    subscription_status: Optional[str]
    is_trial: bool
    billable_this_month: int
    trial_used: int
    trial_remaining: int
    trial_exhausted: bool
    estimated_charge: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BillingService:
    """计费服务：用量统计与账单门户"""

    def __init__(self, db: DatabaseManager,
                 policy: Optional[UsagePolicy] = None,
                 functions: Optional[FunctionsClient] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.policy = policy or UsagePolicy.from_settings()
        self.functions = functions
        self._clock = clock

    def trial_used(self, shop_id: int, now: Optional[datetime] = None) -> int:
        """试用统计范围内的计费事件数量"""
        now = now or self._clock()
        return self.db.billable_events.count_since(
            shop_id, self.policy.period_start(now)
        )

    def usage(self, shop_id: int) -> UsageSummary:
        """计算店铺当前用量

        Raises:
            RecordNotFound: 店铺不存在
        """
        now = self._clock()
        shop = self.db.shops.get(shop_id)
        this_month = self.db.billable_events.count_since(shop_id, month_start(now))
        used = self.trial_used(shop_id, now)

        return UsageSummary(
            shop_id=shop_id,
            subscription_status=shop.subscription_status,
            is_trial=shop.is_trial,
            billable_this_month=this_month,
            trial_used=used,
            trial_remaining=self.policy.trial_remaining(used),
            trial_exhausted=shop.is_trial and self.policy.is_exhausted(used),
            estimated_charge=(
                0.0 if shop.is_trial
                else round(this_month * self.policy.price_per_client, 2)
            ),
        )

    def create_portal_session(self, shop_id: int) -> str:
        """创建支付平台账单门户会话

        Returns:
            门户跳转地址

        Raises:
            FunctionInvocationError: 未配置云函数或调用失败
        """
        if self.functions is None:
            raise FunctionInvocationError("Billing functions endpoint is not configured")

        shop = self.db.shops.get(shop_id)
        body = {"shop_id": shop_id}
        if shop.stripe_customer_id:
            body["customer_id"] = shop.stripe_customer_id
        data = self.functions.invoke("create-stripe-portal", body)
        url = data.get("url")
        if not url:
            raise FunctionInvocationError("Billing portal did not return a URL")
        logger.info(f"Billing portal session created for shop {shop_id}")
        return url
