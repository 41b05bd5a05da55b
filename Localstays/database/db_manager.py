from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base
from Localstays.config.settings import get_settings
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.utils.exceptions import DatabaseException, ConfigException

logger = get_module_logger(LogModule.DATABASE)


class DBManager:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DBManager, cls).__new__(cls)
            cls._instance.engine = None
            cls._instance.SessionLocal = None
        return cls._instance

    def configure(self, db_url: Optional[str] = None, echo: Optional[bool] = None) -> None:
        """显式(重新)绑定数据库，未传参时读取 Settings.database"""
        db_settings = get_settings().database
        url = db_url or db_settings.url
        if not url:
            raise ConfigException("DATABASE_URL 未配置，无法初始化数据库连接")

        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if "postgresql+asyncpg://" in url:
            url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
        if not url.startswith(("postgresql", "sqlite")):
            raise DatabaseException(f"不支持的数据库 URL 格式: {url}")

        try:
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            self.engine = create_engine(
                url,
                echo=db_settings.echo if echo is None else echo,
                connect_args=connect_args,
            )
            self.SessionLocal = sessionmaker(bind=self.engine)
        except Exception as e:
            raise DatabaseException(f"数据库连接失败，请检查 DATABASE_URL：{e}") from e

    def _ensure_engine(self):
        """懒加载创建数据库 Engine 和 Session，避免导入即连接"""
        if self.engine is not None and self.SessionLocal is not None:
            return
        self.configure()

    def get_session(self) -> Session:
        self._ensure_engine()
        return self.SessionLocal()

    def init_db(self) -> None:
        """创建所有表结构（已存在则跳过）。生产环境请使用 alembic upgrade head"""
        self._ensure_engine()
        Base.metadata.create_all(self.engine)
        logger.info("Database tables initialized successfully")

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None
