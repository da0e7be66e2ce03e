"""FastAPI 应用入口点。"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from parms_api.api.router import api_router
from parms_api.core.config import get_settings
from parms_api.db.federation import ConnectionFederator
from parms_api.exceptions import register_exception_handlers
from parms_api.middlewares import register_middlewares

settings = get_settings()
logger = logging.getLogger("parms_api")


def configure_logging(level: str) -> None:
    """初始化进程日志格式。"""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """启动时创建联邦数据源注册表（连接按需建立），关闭时统一释放。"""
    federator = ConnectionFederator(get_settings())
    app.state.federator = federator
    logger.info("connection federator ready stores=%s", ",".join(federator.store_names))
    try:
        yield
    finally:
        federator.close_all()


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    configure_logging(settings.log_level)
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        description=(
            "患者门户认证授权与多数据源聚合接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "通过 `Authorization: Bearer <accessToken>` 或 `accessToken` Cookie 认证。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "注册、登录、令牌轮换、登出与口令管理。"},
            {"name": "dashboard", "description": "跨主库、计费库、人事库的患者看板聚合。"},
            {"name": "appointments", "description": "预约查询（加载后校验归属）。"},
            {"name": "patients", "description": "患者建档。"},
            {"name": "prescriptions", "description": "处方续方。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
