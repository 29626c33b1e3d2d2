"""云函数调用客户端

支付门户会话创建、远程统计等能力部署为服务端云函数，
本模块通过 HTTP POST 调用 ``<functions_base_url>/<函数名>``。

调用失败不做自动重试，统一抛出 ``FunctionInvocationError`` 交给调用方提示用户。
"""
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from config.settings import settings
from database.exceptions import FunctionInvocationError


class FunctionsClient:
    """云函数 HTTP 客户端"""

    def __init__(self, base_url: str, api_key: str = "",
                 timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            base_url: 云函数根地址
            api_key: 调用凭证（以 Bearer 方式发送）
            timeout: 请求超时（秒）
            transport: 自定义传输层（测试时注入 MockTransport）
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.Client(
            timeout=timeout, headers=headers, transport=transport
        )

    @classmethod
    def from_settings(cls) -> Optional["FunctionsClient"]:
        """按全局配置创建客户端，未配置地址时返回 None"""
        if not settings.functions_base_url:
            return None
        return cls(
            settings.functions_base_url,
            api_key=settings.functions_api_key,
            timeout=settings.functions_timeout,
        )

    def invoke(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """调用云函数

        Args:
            name: 函数名（如 create-stripe-portal）
            body: JSON 请求体

        Returns:
            函数返回的 JSON 对象

        Raises:
            FunctionInvocationError: 网络错误、非 2xx 响应或返回非 JSON 对象
        """
        url = f"{self.base_url}/{name}"
        try:
            response = self._client.post(url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Function {name} returned {e.response.status_code}")
            raise FunctionInvocationError(
                f"Function {name} failed with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Function {name} call failed: {e}")
            raise FunctionInvocationError(f"Function {name} call failed: {e}") from e

        if not isinstance(data, dict):
            raise FunctionInvocationError(f"Function {name} returned unexpected payload")
        return data

    def close(self):
        """关闭底层连接池"""
        self._client.close()
