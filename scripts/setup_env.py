#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写必要的配置项，生成 .env 文件。
"""
import os

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址（生产环境使用 postgresql://...）", "sqlite:///data/queuedesk.db", False),

    # === Web 仪表盘 ===
    ("WEB_HOST", "Web 监听地址", "0.0.0.0", False),
    ("WEB_PORT", "Web 监听端口", "8080", False),
    ("WEB_USERNAME", "店主登录名（即店铺的 owner_id）", "owner", False),
    ("WEB_PASSWORD", "店主登录密码", "", True),

    # === 计费 ===
    ("TRIAL_CLIENT_ALLOTMENT", "试用期免费顾客数", "100", False),
    ("TRIAL_USAGE_WINDOW", "试用额度统计范围（month / lifetime）", "month", False),
    ("PRICE_PER_CLIENT", "每位完成顾客的价格", "0.25", False),

    # === 云函数 ===
    ("FUNCTIONS_BASE_URL", "云函数根地址（账单门户、远程统计，可留空）", "", False),
    ("FUNCTIONS_API_KEY", "云函数调用凭证", "", False),
    ("ANALYTICS_SOURCE", "统计数据来源（local / remote）", "local", False),

    # === 对象存储 ===
    ("STORAGE_ENDPOINT_URL", "S3 兼容对象存储地址（头像上传，可留空）", "", False),
    ("STORAGE_ACCESS_KEY_ID", "对象存储 Access Key", "", False),
    ("STORAGE_SECRET_ACCESS_KEY", "对象存储 Secret Key", "", False),
    ("STORAGE_BUCKET", "头像存储桶", "avatars", False),
    ("STORAGE_PUBLIC_BASE_URL", "头像公开访问根地址", "", False),

    # === 其他 ===
    ("LOG_LEVEL", "日志级别", "INFO", False),
    ("DAILY_REPORT_TIME", "每日报告时间", "21:00", False),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "WEB": "# === Web 仪表盘配置 ===",
    "TRIAL": "# === 计费配置 ===",
    "PRICE": "# === 计费配置 ===",
    "FUNCTIONS": "# === 云函数配置 ===",
    "ANALYTICS": "# === 云函数配置 ===",
    "STORAGE": "# === 对象存储配置 ===",
    "LOG": "# === 其他配置 ===",
    "DAILY": "# === 其他配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  QueueDesk 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = ["# QueueDesk 配置文件", "# 由 scripts/setup_env.py 自动生成"]

    for key, desc, default, required in CONFIG_ITEMS:
        # 根据前缀分组
        header = SECTION_NAMES.get(key.split("_")[0], "# === 其他配置 ===")
        if header not in env_lines:
            env_lines.append("")
            env_lines.append(header)

        req_tag = " [必填]" if required else ""
        default_hint = f" (默认: {default})" if default else ""
        print(f"📝 {desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  ❌ {key} 是必填项，请输入值。")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库：")
    print("    python scripts/init_db.py")
    print()
    print("  启动应用：")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
