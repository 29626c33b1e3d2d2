"""仪表盘 Web 服务

在独立线程中运行 uvicorn，主线程（app.py）负责信号处理和定时任务。

使用方式：
    ```python
    server = DashboardServer(app, host="0.0.0.0", port=8080)
    await server.startup()
    ...
    await server.shutdown()
    ```
"""
import asyncio
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI
from loguru import logger


class DashboardServer:
    """uvicorn 服务包装"""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 8080):
        self.app = app
        self.host = host
        self.port = port
        self.running = False
        self._server_thread: Optional[threading.Thread] = None
        self._server: Optional[uvicorn.Server] = None
        self._server_loop: Optional[asyncio.AbstractEventLoop] = None

    def _run_server(self):
        """在独立线程中运行 uvicorn 服务器"""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._server_loop = loop

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            loop="asyncio",
        )
        server = uvicorn.Server(config)
        # 信号由 app.py 统一处理
        server.install_signal_handlers = lambda: None
        self._server = server

        try:
            loop.run_until_complete(server.serve())
        except (OSError, RuntimeError) as e:
            logger.error(f"Dashboard server stopped with error: {e}")
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def startup(self, max_wait: float = 5.0):
        """启动 Web 服务"""
        self.running = True
        self._server_thread = threading.Thread(target=self._run_server, daemon=True)
        self._server_thread.start()

        waited = 0.0
        while (self._server is None or not self._server.started) and waited < max_wait:
            await asyncio.sleep(0.1)
            waited += 0.1

        logger.info(f"Dashboard started: http://{self.host}:{self.port}")

    async def shutdown(self):
        """停止 Web 服务"""
        self.running = False
        if self._server is None:
            return

        logger.info("Stopping dashboard server...")
        self._server.should_exit = True
        if self._server_thread and self._server_thread.is_alive():
            self._server_thread.join(timeout=3.0)

        if self._server_thread and self._server_thread.is_alive():
            logger.warning("Dashboard server did not stop within 3s, forcing exit")
            self._server.force_exit = True
            self._server_thread.join(timeout=2.0)
            if self._server_thread.is_alive():
                logger.warning("Dashboard server thread will exit with the process")

        self._server = None
        self._server_loop = None
        self._server_thread = None
        logger.info("Dashboard stopped")
