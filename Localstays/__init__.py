"""
Localstays 核心包

短租平台的订阅权益 / 广告位核算引擎:

1. Entitlements - 令牌可用性、广告位创建 / 转换 / 复用、续费与改套餐
2. Billing - Stripe 事件同步（Webhook 与队列批处理）
3. Listings - 房源上下线编排与广告位投影
4. Sweeps - 过期清理、到期提醒、对账
"""

__version__ = "0.1.0"

from Localstays.config import get_settings, set_settings, Settings

__all__ = ["__version__", "get_settings", "set_settings", "Settings"]
