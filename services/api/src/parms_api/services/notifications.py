"""账号通知出口。

邮件 / 短信投递由外部系统负责，这里只定义注入点；默认实现只记录日志，不记录令牌原文。
"""

import logging
from typing import Protocol

from parms_api.models.auth import User

logger = logging.getLogger(__name__)


class AccountNotifier(Protocol):
    def send_password_reset(self, user: User, raw_token: str) -> None: ...

    def send_email_verification(self, user: User, raw_token: str) -> None: ...


class LoggingNotifier:
    """默认通知实现。"""

    def send_password_reset(self, user: User, raw_token: str) -> None:
        logger.info("password reset token issued user_id=%s", user.id)

    def send_email_verification(self, user: User, raw_token: str) -> None:
        logger.info("email verification token issued user_id=%s", user.id)
