"""仪表盘 HTTP API

路由（除 /api/login 和 /health 外都需要 Bearer token）：
- POST   /api/login                  → 登录
- POST   /api/logout                 → 退出登录
- GET    /api/shop                   → 店铺资料
- PUT    /api/shop                   → 修改店铺资料
- GET    /api/queue                  → 队列看板
- POST   /api/queue                  → 新顾客排队
- GET    /api/queue/{id}             → 排队记录详情
- POST   /api/queue/{id}/start       → 开始服务
- POST   /api/queue/{id}/complete    → 完成服务
- POST   /api/queue/{id}/no-show     → 标记爽约
- POST   /api/queue/{id}/requeue     → 重新排队
- PUT    /api/queue/{id}/barber      → 修改理发师
- DELETE /api/queue/{id}             → 删除排队记录
- GET/POST /api/barbers, DELETE /api/barbers/{id}
- GET/POST /api/services, DELETE /api/services/{id}
- GET    /api/analytics              → 经营统计
- GET    /api/billing/usage          → 用量
- GET    /api/billing/plans          → 套餐说明
- POST   /api/billing/portal         → 账单门户地址
- GET    /health                     → 健康检查
"""
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from config.business_config import business_config
from database import DatabaseManager
from database.exceptions import (
    DependencyInUse, EntryNotFound, FunctionInvocationError, InvalidTransition,
    NoBarberAssigned, QueueDeskError, RecordNotFound, StoreUnavailable, UploadFailed
)
from database.models import QueueEntry, Shop
from business.analytics import AnalyticsAggregator
from business.avatar_storage import AvatarStore
from business.billing import BillingService, UsagePolicy
from business.functions_client import FunctionsClient
from business.queue_lifecycle import QueueLifecycleManager
from business.shop_admin import ShopAdmin
from interface.web.auth import TokenStore

# 按顺序匹配，子类需排在父类之前
ERROR_STATUS = (
    (EntryNotFound, 404),
    (RecordNotFound, 404),
    (InvalidTransition, 409),
    (NoBarberAssigned, 422),
    (DependencyInUse, 409),
    (StoreUnavailable, 503),
    (UploadFailed, 502),
    (FunctionInvocationError, 502),
)


def http_status_for(exc: QueueDeskError) -> int:
    for error_class, status in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status
    return 500


@dataclass
class DashboardContext:
    """API 依赖的业务服务集合"""
    db: DatabaseManager
    lifecycle: QueueLifecycleManager
    admin: ShopAdmin
    analytics: AnalyticsAggregator
    billing: BillingService

    @classmethod
    def build(cls, db: DatabaseManager,
              functions: Optional[FunctionsClient] = None,
              avatars: Optional[AvatarStore] = None,
              policy: Optional[UsagePolicy] = None,
              analytics_source: str = "local") -> "DashboardContext":
        policy = policy or UsagePolicy.from_settings()
        return cls(
            db=db,
            lifecycle=QueueLifecycleManager(db, policy),
            admin=ShopAdmin(db, avatars),
            analytics=AnalyticsAggregator(db, functions, source=analytics_source),
            billing=BillingService(db, policy, functions),
        )


class LoginRequest(BaseModel):
    username: str
    password: str


class ShopUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    queue_mode: Optional[str] = None


class EnqueueRequest(BaseModel):
    client_name: str
    barber_id: Optional[int] = None
    service_ids: List[int] = Field(default_factory=list)


class ReassignRequest(BaseModel):
    barber_id: int


class ServiceCreate(BaseModel):
    name: str
    price: float = Field(ge=0)
    duration_minutes: int = Field(gt=0)


def create_dashboard_app(ctx: DashboardContext, tokens: TokenStore) -> FastAPI:
    """创建仪表盘 FastAPI 应用"""
    app = FastAPI(
        title="QueueDesk",
        description="Barbershop queue dashboard API",
        version="1.0.0",
    )

    @app.exception_handler(QueueDeskError)
    async def queue_desk_error_handler(request: Request, exc: QueueDeskError):
        status = http_status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=422,
            content={"error": "InvalidInput", "detail": str(exc)},
        )

    def _bearer_token(request: Request) -> Optional[str]:
        auth = request.headers.get("Authorization", "")
        return auth[7:] if auth.startswith("Bearer ") else None

    def current_shop(request: Request) -> Shop:
        """从请求头中验证 token 并解析店铺"""
        token = _bearer_token(request)
        owner_id = tokens.verify(token) if token else None
        if owner_id is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        shop = ctx.db.shops.get_by_owner(owner_id)
        if shop is None:
            raise HTTPException(status_code=404, detail=f"No shop for owner {owner_id}")
        return shop

    def own_entry(entry_id: int, shop: Shop) -> QueueEntry:
        entry = ctx.db.queue_entries.get(entry_id)
        if entry is None or entry.shop_id != shop.id:
            raise EntryNotFound(f"Queue entry {entry_id} not found")
        return entry

    # ==================== 认证 ====================

    @app.post("/api/login")
    def login(data: LoginRequest):
        token = tokens.login(data.username, data.password)
        if token is None:
            return JSONResponse(
                status_code=401,
                content={"success": False, "error": "Invalid username or password"},
            )
        logger.info(f"Owner {data.username} logged in")
        return {"success": True, "token": token}

    @app.post("/api/logout")
    def logout(request: Request, _=Depends(current_shop)):
        tokens.revoke(_bearer_token(request))
        return {"success": True}

    # ==================== 店铺 ====================

    @app.get("/api/shop")
    def get_shop(shop: Shop = Depends(current_shop)):
        return ctx.db.get_shop_info(shop.id)

    @app.put("/api/shop")
    def update_shop(data: ShopUpdate, shop: Shop = Depends(current_shop)):
        return ctx.admin.update_shop(shop.id, **data.model_dump(exclude_unset=True))

    # ==================== 队列 ====================

    @app.get("/api/queue")
    def queue_board(show_all: bool = False, shop: Shop = Depends(current_shop)):
        return ctx.db.get_queue_board(shop.id, show_all=show_all)

    @app.post("/api/queue", status_code=201)
    def enqueue(data: EnqueueRequest, shop: Shop = Depends(current_shop)):
        entry = ctx.db.queue_entries.enqueue(
            shop.id, data.client_name,
            barber_id=data.barber_id, service_ids=data.service_ids,
        )
        return ctx.db.queue_entries.get_detail(entry.id)

    @app.get("/api/queue/{entry_id}")
    def queue_entry_detail(entry_id: int, shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.db.queue_entries.get_detail(entry_id)

    @app.post("/api/queue/{entry_id}/start")
    def start_service(entry_id: int, shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.lifecycle.advance(entry_id).to_dict()

    @app.post("/api/queue/{entry_id}/complete")
    def complete_service(entry_id: int, shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.lifecycle.complete(entry_id).to_dict()

    @app.post("/api/queue/{entry_id}/no-show")
    def mark_no_show(entry_id: int, shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.lifecycle.mark_no_show(entry_id).to_dict()

    @app.post("/api/queue/{entry_id}/requeue")
    def requeue(entry_id: int, allow_any_status: bool = False,
                shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.lifecycle.requeue(entry_id, allow_any_status).to_dict()

    @app.put("/api/queue/{entry_id}/barber")
    def reassign(entry_id: int, data: ReassignRequest,
                 shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        return ctx.lifecycle.reassign(entry_id, data.barber_id).to_dict()

    @app.delete("/api/queue/{entry_id}")
    def delete_entry(entry_id: int, shop: Shop = Depends(current_shop)):
        own_entry(entry_id, shop)
        ctx.lifecycle.delete(entry_id)
        return {"success": True}

    # ==================== 理发师 ====================

    @app.get("/api/barbers")
    def barbers_list(shop: Shop = Depends(current_shop)):
        return {"data": ctx.db.get_barber_list(shop.id)}

    @app.post("/api/barbers", status_code=201)
    def add_barber(name: str = Form(...),
                   avatar: Optional[UploadFile] = File(None),
                   shop: Shop = Depends(current_shop)):
        if avatar is not None and avatar.filename:
            barber = ctx.admin.add_barber(
                shop.id, name,
                avatar_filename=avatar.filename,
                avatar_data=avatar.file.read(),
                avatar_content_type=avatar.content_type,
            )
        else:
            barber = ctx.admin.add_barber(shop.id, name)
        return {"id": barber.id, "name": barber.name, "avatar_url": barber.avatar_url}

    @app.delete("/api/barbers/{barber_id}")
    def remove_barber(barber_id: int, shop: Shop = Depends(current_shop)):
        ctx.admin.remove_barber(shop.id, barber_id)
        return {"success": True}

    # ==================== 服务项目 ====================

    @app.get("/api/services")
    def services_list(shop: Shop = Depends(current_shop)):
        return {"data": ctx.db.get_service_list(shop.id)}

    @app.post("/api/services", status_code=201)
    def add_service(data: ServiceCreate, shop: Shop = Depends(current_shop)):
        service = ctx.admin.add_service(
            shop.id, data.name, data.price, data.duration_minutes
        )
        return {
            "id": service.id,
            "name": service.name,
            "price": float(service.price),
            "duration_minutes": service.duration_minutes,
        }

    @app.delete("/api/services/{service_id}")
    def remove_service(service_id: int, shop: Shop = Depends(current_shop)):
        ctx.admin.remove_service(shop.id, service_id)
        return {"success": True}

    # ==================== 统计与计费 ====================

    @app.get("/api/analytics")
    def analytics(range_name: str = Query("today", alias="range"),
                  shop: Shop = Depends(current_shop)):
        return ctx.analytics.report(shop.id, range_name).to_dict()

    @app.get("/api/billing/usage")
    def billing_usage(shop: Shop = Depends(current_shop)):
        return ctx.billing.usage(shop.id).to_dict()

    @app.get("/api/billing/plans")
    def billing_plans(_=Depends(current_shop)):
        return {"data": business_config.get_pricing_tiers()}

    @app.post("/api/billing/portal")
    def billing_portal(shop: Shop = Depends(current_shop)):
        return {"url": ctx.billing.create_portal_session(shop.id)}

    # ==================== 健康检查 ====================

    @app.get("/health")
    def health_check():
        try:
            connected = ctx.db.ping()
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {e}")
            connected = False
        return {"status": "ok" if connected else "degraded", "db_connected": connected}

    return app
