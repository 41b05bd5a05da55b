"""
FastAPI 应用主入口

Localstays 订阅权益 / 广告位服务：令牌核算、房源上下线、Stripe 事件同步。
"""

import logging
import os
import sys
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))
load_dotenv(project_root / ".env")

# 必须在导入路由之前完成，保证导入期日志也走统一管道
from Localstays.observability.logging import LogContext, configure_logging

configure_logging(force=True)
logging.captureWarnings(True)

from Localstays import __version__
from Localstays.database.db_manager import DBManager
from Localstays.services.entitlements.feature_flags import get_feature_flags
from Localstays.utils.exceptions import ConfigException, DatabaseException
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.exception_handlers import register_exception_handlers

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动时预热数据库引擎与功能开关，关闭时释放连接池"""
    db = DBManager()
    try:
        if db.engine is None:
            db.configure()
    except (ConfigException, DatabaseException) as e:
        # 数据库不可用时仍然启动，/ready 会报告 degraded
        logger.error(f"Database engine not available at startup: {e}")
    flags = get_feature_flags()
    logger.info(f"Review compensation flag at startup: {flags.review_compensation_enabled()}")
    yield
    db.dispose()
    logger.info("Localstays API shut down")


app = FastAPI(
    title="Localstays Entitlements API",
    description="""
    ## 短租平台订阅权益 / 广告位 API

    - **令牌核算**: 套餐令牌总数 / 已用 / 可用
    - **房源上下线**: 订阅广告位、佣金广告位、空闲广告位复用
    - **Stripe 同步**: Webhook 与事件队列批处理
    """,
    version=__version__,
    lifespan=lifespan,
)

cors_origins = DEFAULT_CORS_ORIGINS + [
    origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """为每个请求分配 request_id 并注入日志上下文"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    with LogContext(request_id=request_id):
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


register_exception_handlers(app)
app.include_router(api_v1_router)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "ok"}


@app.get("/ready", tags=["System"])
async def readiness_check():
    """数据库连通性检查"""
    from sqlalchemy import text

    db_status = "ok"
    try:
        session = DBManager().get_session()
        try:
            session.execute(text("SELECT 1"))
        finally:
            session.close()
    except Exception as e:
        db_status = f"error: {e}"

    return {
        "status": "ready" if db_status == "ok" else "degraded",
        "version": app.version,
        "dependencies": {"database": db_status},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.app.main:app",
        host=os.getenv("LS_API_HOST", "0.0.0.0"),
        port=int(os.getenv("LS_API_PORT", "8000")),
        reload=os.getenv("LS_API_RELOAD", "false").lower() == "true",
    )
