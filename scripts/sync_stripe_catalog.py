#!/usr/bin/env python3
"""
从 Stripe 全量同步套餐目录（产品 + 周期价格）

用法:
    python scripts/sync_stripe_catalog.py

说明:
    日常由 product.* / price.* 事件增量同步；此脚本用于初始化或修复本地目录。
    缺少 adSlots 元数据的产品、非周期价格会被跳过。
"""

import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from Localstays.database.db_manager import DBManager
from Localstays.observability.logging import configure_logging
from Localstays.services.entitlements.catalog import CatalogService
from Localstays.services.stripe_service import StripeClient


def main():
    configure_logging()
    print("🔄 同步 Stripe 套餐目录...")

    session = DBManager().get_session()
    try:
        counts = CatalogService(session).sync_from_provider(StripeClient())
        print(f"✅ 完成! 产品 {counts['products']} 个, 价格 {counts['prices']} 个")
    except Exception as e:
        session.rollback()
        print(f"❌ 错误: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
