"""多数据源连接注册表。

职责:
1. 按需（首次使用时）为主库、计费库、人事库创建引擎并缓存到进程结束。
2. 按数据源能力返回不同类型的句柄：主库句柄可开启读写会话；
   只读库句柄只暴露查询方法，任何写操作在触达网络前即抛出 ConfigurationError。
3. 进程关闭时统一释放连接（close_all 可重复调用）。

注册表作为显式对象在应用生命周期中创建并注入，不使用模块级全局引擎。
"""

from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
import logging
from threading import Lock
from typing import Any

from sqlalchemy import CompoundSelect, Engine, Select, create_engine, text
from sqlalchemy.engine import RowMapping, make_url
from sqlalchemy.exc import ArgumentError, DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from parms_api.core.config import Settings, get_settings
from parms_api.core.errors import ConfigurationError, UpstreamUnavailable

logger = logging.getLogger(__name__)

PRIMARY_STORE = "primary"
BILLING_STORE = "billing"
STAFF_STORE = "staff"


class StoreCapability(StrEnum):
    """数据源能力标签。"""

    READ_WRITE = "read_write"
    READ_ONLY = "read_only"


class ConnectionState(StrEnum):
    """连接生命周期状态。"""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True)
class StoreSpec:
    """数据源声明：名称、能力与配置项字段名。"""

    name: str
    capability: StoreCapability
    url_field: str


DEFAULT_STORES: tuple[StoreSpec, ...] = (
    StoreSpec(PRIMARY_STORE, StoreCapability.READ_WRITE, "primary_database_url"),
    StoreSpec(BILLING_STORE, StoreCapability.READ_ONLY, "billing_database_url"),
    StoreSpec(STAFF_STORE, StoreCapability.READ_ONLY, "staff_database_url"),
)


@dataclass
class FederatedConnection:
    """单个数据源的连接记录。"""

    spec: StoreSpec
    engine: Engine | None = None
    state: ConnectionState = ConnectionState.UNINITIALIZED


class ReadWriteStoreHandle:
    """可读写数据源句柄。"""

    capability = StoreCapability.READ_WRITE

    def __init__(self, name: str, engine: Engine):
        self.name = name
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    def session(self) -> Session:
        """创建短生命周期 ORM 会话，调用方负责关闭。"""
        return self._session_factory()

    def ping(self) -> None:
        """执行最小探活查询。"""
        with self.engine.connect() as conn:
            conn.execute(text("select 1"))


class ReadOnlyStoreHandle:
    """只读数据源句柄。

    只接受 SELECT 语句；会话在单次查询后立即关闭，不允许请求独占连接。
    驱动层异常统一转换为 UpstreamUnavailable，便于聚合层降级。
    """

    capability = StoreCapability.READ_ONLY

    def __init__(self, name: str, engine: Engine):
        self.name = name
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    def _reject_write(self, operation: str) -> ConfigurationError:
        return ConfigurationError(
            f"store '{self.name}' is read-only; '{operation}' is not permitted",
            code="READ_ONLY_STORE",
        )

    def _ensure_query(self, statement: Any) -> None:
        if not isinstance(statement, (Select, CompoundSelect)):
            raise self._reject_write(type(statement).__name__)

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                # 仅关闭会话，已加载实体在会话外保持可读。
                yield session
        except (DBAPIError, PoolTimeoutError) as exc:
            raise UpstreamUnavailable(self.name) from exc

    def execute(self, statement: Select) -> list[RowMapping]:
        """执行查询并返回行映射列表。"""
        self._ensure_query(statement)
        with self._read_session() as session:
            return list(session.execute(statement).mappings().all())

    def scalars(self, statement: Select) -> list[Any]:
        """执行查询并返回首列对象列表（通常为 ORM 实体）。"""
        self._ensure_query(statement)
        with self._read_session() as session:
            return list(session.scalars(statement).all())

    def scalar(self, statement: Select) -> Any:
        self._ensure_query(statement)
        with self._read_session() as session:
            return session.scalar(statement)

    def get(self, entity: type, ident: Any) -> Any:
        """按主键读取单个实体。"""
        with self._read_session() as session:
            return session.get(entity, ident)

    def ping(self) -> None:
        with self._read_session() as session:
            session.execute(text("select 1"))

    def add(self, *_args: Any, **_kwargs: Any) -> None:
        raise self._reject_write("add")

    def delete(self, *_args: Any, **_kwargs: Any) -> None:
        raise self._reject_write("delete")

    def merge(self, *_args: Any, **_kwargs: Any) -> None:
        raise self._reject_write("merge")

    def flush(self, *_args: Any, **_kwargs: Any) -> None:
        raise self._reject_write("flush")

    def commit(self) -> None:
        raise self._reject_write("commit")


StoreHandle = ReadWriteStoreHandle | ReadOnlyStoreHandle


def _mask_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable url>"


def engine_options(url: str, settings: Settings) -> dict[str, Any]:
    """按后端生成引擎参数。

    连接池等待、建立连接与单条语句执行三处均设置上限，
    查询挂起时驱动主动中断，工作线程随之归还连接。
    """
    backend = make_url(url).get_backend_name()
    options: dict[str, Any] = {"future": True, "pool_pre_ping": settings.store_pool_pre_ping}
    statement_timeout = settings.store_statement_timeout_seconds
    if backend == "sqlite":
        # sqlite3 的 timeout 为等待数据库锁的秒数。
        options["connect_args"] = {"check_same_thread": False, "timeout": statement_timeout}
        return options

    options["pool_timeout"] = settings.store_pool_timeout_seconds
    if backend == "postgresql":
        options["connect_args"] = {
            "connect_timeout": settings.store_connect_timeout_seconds,
            "options": f"-c statement_timeout={int(statement_timeout * 1000)}",
        }
    elif backend in ("mysql", "mariadb"):
        options["connect_args"] = {
            "connect_timeout": settings.store_connect_timeout_seconds,
            "read_timeout": max(1, int(statement_timeout)),
            "write_timeout": max(1, int(statement_timeout)),
        }
    else:
        logger.warning("no driver-level statement timeout for backend=%s", backend)
    return options


def _build_engine(url: str, settings: Settings) -> Engine:
    return create_engine(url, **engine_options(url, settings))


class ConnectionFederator:
    """联邦数据源注册表。"""

    def __init__(self, settings: Settings | None = None, stores: Iterable[StoreSpec] = DEFAULT_STORES):
        self._settings = settings or get_settings()
        self._connections: dict[str, FederatedConnection] = {
            spec.name: FederatedConnection(spec=spec) for spec in stores
        }
        self._handles: dict[str, StoreHandle] = {}
        self._lock = Lock()
        self._closed = False

    @property
    def store_names(self) -> Sequence[str]:
        return tuple(self._connections)

    def _connection(self, name: str) -> FederatedConnection:
        connection = self._connections.get(name)
        if connection is None:
            raise ConfigurationError(f"unknown store '{name}'", code="UNKNOWN_STORE")
        return connection

    def _make_handle(self, connection: FederatedConnection) -> StoreHandle:
        assert connection.engine is not None
        if connection.spec.capability == StoreCapability.READ_WRITE:
            return ReadWriteStoreHandle(connection.spec.name, connection.engine)
        return ReadOnlyStoreHandle(connection.spec.name, connection.engine)

    def _initialize(self, connection: FederatedConnection) -> StoreHandle:
        spec = connection.spec
        url = getattr(self._settings, spec.url_field, None)
        if not url:
            raise ConfigurationError(
                f"connection string for store '{spec.name}' is not configured "
                f"(set PARMS_{spec.url_field.upper()})",
                code="STORE_NOT_CONFIGURED",
            )
        connection.engine = _build_engine(url, self._settings)
        connection.state = ConnectionState.CONNECTED
        logger.info("store initialized name=%s capability=%s url=%s", spec.name, spec.capability, _mask_url(url))
        handle = self._make_handle(connection)
        self._handles[spec.name] = handle
        return handle

    def register_engine(self, name: str, engine: Engine) -> StoreHandle:
        """注入预先构建的引擎（测试或嵌入式部署使用）。"""
        connection = self._connection(name)
        with self._lock:
            if self._closed:
                raise ConfigurationError("connection federator is closed")
            connection.engine = engine
            connection.state = ConnectionState.CONNECTED
            handle = self._make_handle(connection)
            self._handles[name] = handle
            return handle

    def get(self, name: str) -> StoreHandle:
        """返回数据源句柄，首次调用时初始化连接。"""
        connection = self._connection(name)
        with self._lock:
            if self._closed:
                raise ConfigurationError("connection federator is closed")
            handle = self._handles.get(name)
            if handle is None:
                handle = self._initialize(connection)
            return handle

    def primary(self) -> ReadWriteStoreHandle:
        """返回主库读写句柄。"""
        handle = self.get(PRIMARY_STORE)
        if not isinstance(handle, ReadWriteStoreHandle):
            raise ConfigurationError(f"store '{PRIMARY_STORE}' is not writable")
        return handle

    def read_only(self, name: str) -> ReadOnlyStoreHandle:
        """返回只读库句柄。"""
        handle = self.get(name)
        if not isinstance(handle, ReadOnlyStoreHandle):
            raise ConfigurationError(f"store '{name}' is not declared read-only")
        return handle

    def state(self, name: str) -> ConnectionState:
        return self._connection(name).state

    def close_all(self) -> None:
        """释放所有已初始化连接，可重复调用。"""
        with self._lock:
            if self._closed:
                return
            for connection in self._connections.values():
                if connection.engine is not None and connection.state == ConnectionState.CONNECTED:
                    connection.engine.dispose()
                    logger.info("store closed name=%s", connection.spec.name)
                connection.state = ConnectionState.CLOSED
            self._handles.clear()
            self._closed = True
