from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from chatbot_test_platform.config.settings import settings
from chatbot_test_platform.config.logger import setup_logging, logger
from chatbot_test_platform.api import routes
from chatbot_test_platform.core.aggregator import RunReportAggregator
from chatbot_test_platform.core.runner import ScenarioRunner
from chatbot_test_platform.http_client.client import ChatEndpointClient
from chatbot_test_platform.scenarios.loader import ScenarioLoader
from chatbot_test_platform.services.scenario_service import ScenarioService
from chatbot_test_platform.storage.database import Database
from chatbot_test_platform.storage.json_writer import ReportWriter
from chatbot_test_platform.storage.scenario_store import ScenarioStore
from chatbot_test_platform.ws.manager import WSConnectionManager

# 全局实例
db_instance: Optional[Database] = None
ws_manager_instance: Optional[WSConnectionManager] = None
scenario_service_instance: Optional[ScenarioService] = None


def build_service(db: Database, client: ChatEndpointClient, ws_manager: WSConnectionManager = None) -> ScenarioService:
    """组装 存储 -> 汇总 -> 运行器 -> 服务"""

    store = ScenarioStore(db)
    report_writer = ReportWriter() if settings.EXPORT_REPORTS else None
    aggregator = RunReportAggregator(store, report_writer=report_writer)
    runner = ScenarioRunner(client, aggregator=aggregator)

    if ws_manager is not None:
        runner.register_progress_callback(ws_manager.send_progress)

    return ScenarioService(db, runner, store=store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""

    global db_instance
    global ws_manager_instance
    global scenario_service_instance

    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info("=" * 60)

    try:
        # 1) 初始化数据库
        db_instance = Database()
        await db_instance.initialize()

        # 2) WebSocket 管理器
        ws_manager_instance = WSConnectionManager()

        # 3) 场景服务（运行器的进度推送到 WebSocket）
        scenario_service_instance = build_service(
            db_instance,
            ChatEndpointClient(),
            ws_manager=ws_manager_instance,
        )

        # 4) 注入全局实例到 API 模块
        routes.scenario_service = scenario_service_instance
        routes.scenario_loader = ScenarioLoader(settings.SCENARIOS_DIR)
        routes.ws_manager = ws_manager_instance

        logger.info("Application started successfully")

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        raise

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")

    # ChatEndpointClient 按请求创建 httpx.AsyncClient，无需显式 close
    if db_instance:
        await db_instance.close()

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """创建 FastAPI 应用"""

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "version": settings.APP_VERSION,
            "database": "initialized" if db_instance else "not initialized",
        }

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": str(exc),
                "type": type(exc).__name__,
            },
        )

    return app


# 创建应用实例
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chatbot_test_platform.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
