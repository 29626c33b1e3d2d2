"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或直接设置同名环境变量（不区分大小写）
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/queuedesk.db"

    # ========== 排队 ==========
    # 新建店铺的默认排队模式：bounded_daily / always_open
    default_queue_mode: str = "always_open"

    # ========== 计费 ==========
    trial_client_allotment: int = 100
    # 试用额度统计范围：month（当月，与原仪表盘一致）/ lifetime
    trial_usage_window: str = "month"
    price_per_client: float = 0.25

    # ========== 云函数（支付 / 远程统计） ==========
    functions_base_url: str = ""
    functions_api_key: str = ""
    functions_timeout: float = 10.0
    # 统计数据来源：local / remote
    analytics_source: str = "local"

    # ========== 对象存储（理发师头像） ==========
    storage_endpoint_url: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_region: str = "auto"
    storage_bucket: str = "avatars"
    storage_public_base_url: str = ""

    # ========== Web 平台配置 ==========
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    web_username: str = "owner"
    web_password: str = "owner123"
    web_token_ttl_hours: int = 24

    # ========== 其他 ==========
    log_level: str = "INFO"
    daily_report_time: str = "21:00"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
