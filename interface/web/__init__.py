"""Web 仪表盘：FastAPI 路由、登录认证和 uvicorn 服务包装"""
from interface.web.auth import TokenStore
from interface.web.routes import DashboardContext, create_dashboard_app
from interface.web.server import DashboardServer

__all__ = ["DashboardContext", "DashboardServer", "TokenStore", "create_dashboard_app"]
