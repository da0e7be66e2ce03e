"""数据库会话管理。"""

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from parms_api.core.errors import ConfigurationError
from parms_api.db.federation import ConnectionFederator


def get_federator(request: Request) -> ConnectionFederator:
    """返回应用生命周期内创建的联邦数据源注册表。"""
    federator = getattr(request.app.state, "federator", None)
    if federator is None:
        raise ConfigurationError("connection federator is not initialized")
    return federator


def get_db(federator: ConnectionFederator = Depends(get_federator)) -> Generator[Session, None, None]:
    """为每个请求提供独立主库会话。"""
    db = federator.primary().session()
    try:
        yield db
    finally:
        db.close()
