"""应用运行配置。

密钥与各数据源连接串不提供默认值：缺失时在首次使用处抛出 ConfigurationError，
而不是静默回退，避免生产环境误用开发配置。
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """接口服务共享配置。"""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PARMS_", extra="ignore")

    app_name: str = Field(default="PARMS Patient Portal API", description="应用名称。")
    app_env: str = Field(default="dev", description="运行环境标识。")
    app_debug: bool = Field(default=False, description="是否开启调试模式。")
    api_prefix: str = Field(default="/api", description="统一接口前缀。")
    log_level: str = Field(default="INFO", description="日志级别。")

    primary_database_url: str | None = Field(default=None, description="主库（可读写）连接地址。")
    billing_database_url: str | None = Field(default=None, description="计费库（只读）连接地址。")
    staff_database_url: str | None = Field(default=None, description="人事库（只读）连接地址。")
    store_query_timeout_seconds: float = Field(default=5.0, description="单次外部数据源调用超时（秒）。")
    store_pool_timeout_seconds: float = Field(default=5.0, description="连接池获取连接超时（秒）。")
    store_connect_timeout_seconds: int = Field(default=5, description="建立数据库连接超时（秒）。")
    store_statement_timeout_seconds: float = Field(default=5.0, description="驱动层单条语句执行超时（秒）。")
    store_pool_pre_ping: bool = Field(default=True, description="是否开启连接预检查。")

    access_token_secret: str | None = Field(default=None, description="访问令牌签名密钥。")
    refresh_token_secret: str | None = Field(default=None, description="刷新令牌签名密钥，必须与访问令牌密钥不同。")
    access_token_ttl_seconds: int = Field(default=900, description="访问令牌有效期（秒）。")
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 3600, description="刷新令牌有效期（秒）。")
    refresh_token_max_per_user: int = Field(default=5, description="每个用户保留的刷新令牌记录上限。")
    jwt_algorithm: str = Field(default="HS256", description="令牌签名算法。")
    jwt_issuer: str = Field(default="parms-backend", description="签发方。")
    jwt_audience: str = Field(default="parms-frontend", description="受众。")
    jwt_leeway_seconds: int = Field(default=0, description="令牌校验时钟容错秒数。")

    password_hash_iterations: int = Field(default=390000, description="PBKDF2 密码哈希迭代次数。")
    password_reset_ttl_seconds: int = Field(default=3600, description="重置密码令牌有效期（秒）。")
    email_verification_ttl_seconds: int = Field(default=24 * 3600, description="邮箱验证令牌有效期（秒）。")

    lockout_threshold: int = Field(default=5, description="连续登录失败锁定阈值。")
    lockout_duration_seconds: int = Field(default=2 * 3600, description="账号锁定时长（秒）。")
    self_service_role: str = Field(default="patient", description="需要做归属校验的最高角色（自助层）。")

    redis_url: str | None = Field(default=None, description="Redis 连接地址，用于访问令牌黑名单。")
    access_denylist_prefix: str = Field(default="auth:denylist:", description="访问令牌黑名单键前缀。")

    @field_validator("refresh_token_max_per_user", "lockout_threshold")
    @classmethod
    def ensure_positive(cls, value: int) -> int:
        """上限类配置必须为正整数。"""
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """规范化日志级别。"""
        return value.strip().upper() or "INFO"


@lru_cache
def get_settings() -> Settings:
    """返回缓存后的配置单例。"""
    return Settings()
