"""仪表盘登录认证

店主使用配置的用户名/密码登录，获得 Bearer token（默认 24 小时有效）。
token 对应店主身份（owner_id），再由 owner_id 找到所属店铺。
"""
import secrets
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple


class TokenStore:
    """内存 token 存储"""

    def __init__(self, credentials: Dict[str, str], ttl_hours: int = 24,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            credentials: 用户名 -> 密码，用户名即店主身份 owner_id
            ttl_hours: token 有效期（小时）
            clock: 当前时间来源
        """
        self._credentials = dict(credentials)
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._tokens: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def login(self, username: str, password: str) -> Optional[str]:
        """校验用户名密码，成功时返回新 token"""
        expected = self._credentials.get(username)
        if expected is None or not secrets.compare_digest(expected, password or ""):
            return None
        token = secrets.token_hex(32)
        with self._lock:
            self._tokens[token] = (username, self._clock() + self._ttl)
        return token

    def verify(self, token: str) -> Optional[str]:
        """校验 token，有效时返回 owner_id，过期的 token 会被清除"""
        with self._lock:
            record = self._tokens.get(token)
            if record is None:
                return None
            owner_id, expires_at = record
            if self._clock() > expires_at:
                del self._tokens[token]
                return None
            return owner_id

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._tokens.pop(token, None) is not None
