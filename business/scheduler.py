"""定时任务调度器

每天在 settings.daily_report_time 汇总各店铺当天的经营数据和本月计费数量，写入日志。
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from database import DatabaseManager
from database.exceptions import QueueDeskError
from business.analytics import AnalyticsAggregator
from business.billing import BillingService

DAILY_REPORT_JOB_ID = "daily_report"


def parse_report_time(value: str) -> Tuple[int, int]:
    """解析 ``HH:MM`` 格式的时间

    Raises:
        ValueError: 格式无效
    """
    try:
        hour_text, minute_text = value.strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid report time: {value}, expected HH:MM")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid report time: {value}, expected HH:MM")
    return hour, minute


def collect_daily_summaries(db: DatabaseManager,
                            analytics: AnalyticsAggregator,
                            billing: BillingService) -> List[Dict[str, Any]]:
    """汇总所有店铺当天的数据

    单个店铺出错只记录日志，继续处理其他店铺。
    """
    summaries = []
    for shop in db.shops.list_all():
        try:
            report = analytics.report(shop.id, "today")
            usage = billing.usage(shop.id)
        except QueueDeskError as e:
            logger.error(f"Daily report failed for shop {shop.id}: {e}")
            continue
        summaries.append({
            "shop_id": shop.id,
            "shop_name": shop.name,
            "total_revenue": report.total_revenue,
            "total_customers": report.total_customers,
            "no_show_rate": report.no_show_rate,
            "billable_this_month": usage.billable_this_month,
            "trial_remaining": usage.trial_remaining if usage.is_trial else None,
        })
    return summaries


def make_daily_report_task(db: DatabaseManager,
                           analytics: AnalyticsAggregator,
                           billing: BillingService) -> Callable:
    """生成每日报告任务（async 函数）"""
    async def daily_report():
        summaries = collect_daily_summaries(db, analytics, billing)
        for summary in summaries:
            logger.info(
                f"[Daily report] {summary['shop_name']}: "
                f"revenue={summary['total_revenue']:.2f}, "
                f"customers={summary['total_customers']}, "
                f"no-show rate={summary['no_show_rate']:.1f}%, "
                f"billable this month={summary['billable_this_month']}"
            )
        logger.info(f"Daily report finished for {len(summaries)} shops")
        return summaries

    return daily_report


class Scheduler:
    """定时任务调度器

    业务逻辑通过回调函数注入，调度器本身只负责触发。
    """

    def __init__(self, event_loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Args:
            event_loop: 运行任务的事件循环，None 时在 start() 时取当前运行的循环
        """
        if event_loop is not None:
            self.scheduler = AsyncIOScheduler(event_loop=event_loop)
        else:
            self.scheduler = AsyncIOScheduler()

    def add_daily_task(
        self,
        task_func: Callable,
        hour: int = 21,
        minute: int = 0,
        task_id: str = DAILY_REPORT_JOB_ID,
        task_name: str = '每日报告'
    ):
        """添加每日定时任务

        Args:
            task_func: 任务函数（async 函数）
            hour: 小时 (0-23)
            minute: 分钟 (0-59)
            task_id: 任务ID
            task_name: 任务名称
        """
        self.scheduler.add_job(
            task_func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=task_id,
            name=task_name,
            replace_existing=True
        )
        logger.info(f"Added daily task '{task_name}' at {hour:02d}:{minute:02d}")

    def schedule_daily_report(self, task_func: Callable, report_time: str):
        """按 ``HH:MM`` 注册每日报告任务"""
        hour, minute = parse_report_time(report_time)
        self.add_daily_task(task_func, hour=hour, minute=minute)

    def get_job(self, job_id: str):
        return self.scheduler.get_job(job_id)

    def start(self):
        """启动调度器"""
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        """停止调度器"""
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def remove_job(self, job_id: str):
        """移除任务

        Args:
            job_id: 任务ID
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"Job {job_id} removed")
        except JobLookupError as e:
            logger.warning(f"Failed to remove job {job_id}: {e}")
