"""用户接口模块 - 店主仪表盘

架构设计：
    店主 ──→ HTTP API ──→ 业务服务（排队生命周期 / 统计 / 计费） ──→ 数据库
    (浏览器)   (FastAPI)                                             (SQLAlchemy)

使用示例：
    ```python
    from interface import DashboardContext, DashboardServer, TokenStore, create_dashboard_app

    ctx = DashboardContext.build(db)
    app = create_dashboard_app(ctx, TokenStore({"owner": "secret"}))
    server = DashboardServer(app, port=8080)
    await server.startup()
    ```
"""
from interface.web import DashboardContext, DashboardServer, TokenStore, create_dashboard_app

__all__ = [
    "DashboardContext",
    "DashboardServer",
    "TokenStore",
    "create_dashboard_app",
]
