#!/usr/bin/env python3
"""
广告位过期清理 / 到期提醒

用法:
    python scripts/run_slot_expiry.py [--sweep] [--warn] [--all]

说明:
    --sweep  下线并删除已过期的广告位（过期未付款的广告位等待付款恢复，
             除非已被取消订阅标记为立即过期）
    --warn   按房东汇总即将到期的广告位并发送提醒
    不指定选项时等同于 --all，适合由 cron / 调度器每日运行。

前置条件:
    1. 数据库已通过 alembic upgrade head 建表
    2. .env 配置正确
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
from Localstays.services.slot_expiry_service import SlotExpiryService


def main():
    parser = argparse.ArgumentParser(
        description="广告位过期清理 / 到期提醒",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  python scripts/run_slot_expiry.py          # 清理 + 提醒
  python scripts/run_slot_expiry.py --warn   # 只发送到期提醒
        """
    )
    parser.add_argument("--sweep", action="store_true", help="处理已过期的广告位")
    parser.add_argument("--warn", action="store_true", help="发送到期提醒")
    parser.add_argument("--all", action="store_true", help="全部执行")

    args = parser.parse_args()
    if not any([args.sweep, args.warn, args.all]):
        args.all = True

    configure_logging()
    session = DBManager().get_session()
    try:
        service = SlotExpiryService(session)
        if args.all or args.sweep:
            stats = service.process_expired_slots()
            print(f"✅ 过期清理: {stats['expired']} 个已删除, {stats['skipped']} 个等待付款, {stats['failed']} 个失败")
        if args.all or args.warn:
            stats = service.send_expiry_warnings()
            print(f"✅ 到期提醒: {stats['slots']} 个广告位, {stats['hosts']} 个房东")
    except Exception as e:
        session.rollback()
        print(f"❌ 错误: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
