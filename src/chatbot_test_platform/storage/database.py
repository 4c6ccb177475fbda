from pathlib import Path
from typing import Optional
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from chatbot_test_platform.config.settings import settings
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.models.base import Base


def _load_all_models() -> None:
    """Import all model modules so they are registered with SQLAlchemy metadata."""

    import importlib

    module_names = [
        "chatbot_test_platform.models.test_scenario",
    ]

    for module_name in module_names:
        importlib.import_module(module_name)


class Database:
    """数据库操作接口"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """初始化数据库"""

        try:
            url = make_url(self.database_url)

            # SQLite：确保数据库文件所在目录存在
            if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
                logger.info(f"Using SQLite database: {url.database}")
            else:
                logger.info("Using SQL database via DATABASE_URL")

            self.engine = create_async_engine(
                self.database_url,
                echo=settings.DEBUG,
            )

            # 确保所有模型已被加载到 Base.metadata（否则 create_all 不会创建新表）
            _load_all_models()

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            # 会话工厂
            self.async_session = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            logger.info("Database initialized")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    async def create(self, model):
        """创建记录"""
        async with self.async_session() as session:
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return model

    async def update(self, model):
        """更新记录"""
        async with self.async_session() as session:
            merged = await session.merge(model)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def delete(self, model) -> None:
        """删除记录"""
        async with self.async_session() as session:
            merged = await session.merge(model)
            await session.delete(merged)
            await session.commit()

    async def get(self, model_class, model_id: str):
        """获取记录"""
        async with self.async_session() as session:
            return await session.get(model_class, model_id)

    async def close(self):
        """关闭数据库连接"""
        if self.engine:
            await self.engine.dispose()
