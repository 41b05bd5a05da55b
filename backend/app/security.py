"""
Security Core - 请求身份与数据库依赖

认证本身由上游网关完成；这里只读取网关注入的房东身份头 (X-Host-Id)。
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from Localstays.utils.exceptions import ConfigException

HOST_ID_HEADER = "X-Host-Id"


def get_db():
    """获取数据库会话 (依赖注入)"""
    from Localstays.database.db_manager import DBManager
    db = DBManager()
    try:
        session = db.get_session()
    except ConfigException as e:
        # 将配置错误显式暴露为 503，避免调用方收到模糊的 500
        raise HTTPException(status_code=503, detail=str(e))
    try:
        yield session
    finally:
        session.close()


async def get_current_host_id(
    x_host_id: Optional[str] = Header(None, alias=HOST_ID_HEADER),
) -> str:
    """当前房东 ID（缺失时返回 401）"""
    if not x_host_id or not x_host_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {HOST_ID_HEADER} header",
        )
    return x_host_id.strip()
