#!/usr/bin/env python3
"""
对账 / 修复工具

用法:
    python scripts/reconcile.py projection [--host HOST_ID]
    python scripts/reconcile.py orphans
    python scripts/reconcile.py relink HOST_ID SUBSCRIPTION_ID

子命令:
    projection  从广告位表重建房源上的冗余字段
    orphans     列出 Stripe 上没有关联任何房东的订阅（checkout 事件丢失）
    relink      手动将订阅关联到房东（按 checkout 完成的语义重放）
"""

import sys
import argparse
from pathlib import Path

# 添加项目根目录到 Python 路径
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from Localstays.database.db_manager import DBManager
from Localstays.observability.logging import configure_logging
from Localstays.services.reconciliation_service import ReconciliationService


def main():
    parser = argparse.ArgumentParser(description="对账 / 修复工具")
    subparsers = parser.add_subparsers(dest="command", required=True)

    projection = subparsers.add_parser("projection", help="重建房源广告位投影")
    projection.add_argument("--host", default=None, help="只处理指定房东")

    subparsers.add_parser("orphans", help="列出未关联的 Stripe 订阅")

    relink = subparsers.add_parser("relink", help="将订阅关联到房东")
    relink.add_argument("host_id")
    relink.add_argument("subscription_id")

    args = parser.parse_args()
    configure_logging()

    session = DBManager().get_session()
    try:
        service = ReconciliationService(session)
        if args.command == "projection":
            changed = service.rebuild_listing_projection(args.host)
            print(f"✅ 投影重建完成: {changed} 个房源已更新")
        elif args.command == "orphans":
            orphans = service.find_orphan_subscriptions()
            for orphan in orphans:
                print(
                    f"  {orphan.stripe_subscription_id}  customer={orphan.stripe_customer_id}  "
                    f"status={orphan.status}  host_hint={orphan.client_reference_id or '-'}"
                )
            print(f"共 {len(orphans)} 个未关联订阅")
        elif args.command == "relink":
            result = service.relink_orphan(args.host_id, args.subscription_id)
            print(f"✅ {result.action}: {result.details}")
    except Exception as e:
        session.rollback()
        print(f"❌ 错误: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
