"""认证接口。"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parms_api.core.errors import (
    AuthenticationError,
    ConflictError,
    InvalidTokenError,
    ValidationError,
)
from parms_api.core.security import deny_access_token
from parms_api.db.session import get_db
from parms_api.dependencies import (
    AuthContext,
    get_account_guard,
    get_auth_context,
    get_notifier,
    get_token_service,
)
from parms_api.models.auth import User, UserCredential
from parms_api.models.enums import ProfileModel, Role, TokenKind
from parms_api.schemas.auth import (
    AuthSessionData,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutData,
    LogoutRequest,
    MessageData,
    PrincipalData,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairData,
    VerifyEmailRequest,
    VerifyTokenData,
)
from parms_api.schemas.common import ErrorResponse, SuccessResponse
from parms_api.services.account_guard import AccountGuard
from parms_api.services.local_auth import (
    burn_password_check,
    digest_token,
    hash_password,
    issue_email_verification_token,
    issue_password_reset_token,
    normalize_email,
    verify_password,
)
from parms_api.services.notifications import AccountNotifier
from parms_api.services.patients import create_patient
from parms_api.services.token_store import (
    lock_token_owner,
    revoke_all_refresh_tokens,
    revoke_refresh_token,
    store_refresh_token,
)
from parms_api.services.tokens import TokenPair, TokenService
from parms_api.utils.response import success
from parms_api.utils.timeutil import as_utc, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# 找回密码接口对存在与不存在的邮箱返回完全相同的结果。
FORGOT_PASSWORD_MESSAGE = "如果该邮箱已注册，重置口令的链接将发送到该邮箱。"


def _invalid_credentials() -> AuthenticationError:
    return AuthenticationError("邮箱或密码错误。", code="INVALID_CREDENTIALS")


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    device = request.headers.get("user-agent")
    ip_address = request.client.host if request.client else None
    return device, ip_address


def _open_session(db: Session, tokens: TokenService, user: User, request: Request) -> TokenPair:
    """签发令牌对并保存刷新令牌记录（不提交事务）。"""
    pair = tokens.issue_pair(user)
    device, ip_address = _client_meta(request)
    store_refresh_token(
        db,
        user.id,
        pair.refresh_token,
        pair.refresh_expires_at,
        device=device,
        ip_address=ip_address,
    )
    return pair


def _pair_data(pair: TokenPair) -> TokenPairData:
    return TokenPairData(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        access_ttl=pair.access_ttl,
    )


def _session_data(pair: TokenPair, user: User) -> AuthSessionData:
    return AuthSessionData(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        access_ttl=pair.access_ttl,
        principal=PrincipalData.model_validate(user),
    )


def _get_credential(db: Session, user: User) -> UserCredential | None:
    return db.execute(select(UserCredential).where(UserCredential.user_id == user.id)).scalar_one_or_none()


@router.post(
    "/register",
    summary="注册本地账号",
    description="创建账号与本地凭据并直接签发令牌对；患者角色同时创建患者档案。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[AuthSessionData],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    notifier: AccountNotifier = Depends(get_notifier),
):
    """注册本地账号。"""
    email = normalize_email(payload.email)
    if db.execute(select(User.id).where(User.email == email)).scalar_one_or_none() is not None:
        raise ConflictError("该邮箱已注册。", code="EMAIL_TAKEN")

    profile_id = None
    profile_model = None
    if payload.role == Role.PATIENT:
        patient = create_patient(
            db,
            first_name=payload.first_name or email.split("@")[0],
            last_name=payload.last_name or "-",
            email=email,
        )
        profile_id = patient.id
        profile_model = ProfileModel.PATIENT
    elif payload.role == Role.DOCTOR:
        profile_model = ProfileModel.DOCTOR

    now = utc_now()
    verification = issue_email_verification_token()
    user = User(
        email=email,
        role=payload.role,
        is_active=True,
        is_email_verified=False,
        profile_id=profile_id,
        profile_model=profile_model,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("该邮箱已注册。", code="EMAIL_TAKEN") from exc

    db.add(
        UserCredential(
            user_id=user.id,
            password_hash=hash_password(payload.password),
            password_updated_at=now,
            email_verification_hash=verification.digest,
            email_verification_expires_at=verification.expires_at,
        )
    )
    pair = _open_session(db, tokens, user, request)
    db.commit()
    db.refresh(user)

    notifier.send_email_verification(user, verification.raw)
    logger.info("user registered user_id=%s role=%s", user.id, user.role)
    return success(request, _session_data(pair, user))


@router.post(
    "/login",
    summary="本地账号登录",
    description="使用邮箱密码登录。锁定账号无论密码是否正确都返回同一提示。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthSessionData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    guard: AccountGuard = Depends(get_account_guard),
):
    """本地账号登录并签发令牌对。"""
    email = normalize_email(payload.email)
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        burn_password_check(payload.password)
        raise _invalid_credentials()

    # 锁定判断先于口令校验，避免通过响应区分“密码错误”与“已锁定”。
    guard.ensure_can_authenticate(user)

    credential = _get_credential(db, user)
    if credential is None or not verify_password(payload.password, credential.password_hash):
        guard.record_failure(db, user)
        db.commit()
        raise _invalid_credentials()

    guard.record_success(db, user)
    pair = _open_session(db, tokens, user, request)
    db.commit()
    db.refresh(user)
    logger.info("login succeeded user_id=%s", user.id)
    return success(request, _session_data(pair, user))


@router.post(
    "/refresh-token",
    summary="刷新令牌",
    description="使用刷新令牌换取新的令牌对，旧刷新令牌立即失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenPairData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def refresh_token(
    payload: RefreshTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    guard: AccountGuard = Depends(get_account_guard),
):
    """轮换刷新令牌。"""
    claims = tokens.verify(payload.refresh_token, TokenKind.REFRESH)
    user = db.get(User, claims.user_id)
    if user is None:
        raise InvalidTokenError()
    guard.ensure_can_authenticate(user)

    device, ip_address = _client_meta(request)
    pair = tokens.rotate(db, payload.refresh_token, user, device=device, ip_address=ip_address)
    return success(request, _pair_data(pair))


@router.post(
    "/logout",
    summary="登出",
    description="注销指定刷新令牌；未传刷新令牌时注销全部设备。当前访问令牌加入黑名单。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[LogoutData],
    responses={401: {"model": ErrorResponse}},
)
def logout(
    request: Request,
    payload: LogoutRequest | None = Body(default=None),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """登出。"""
    if payload is not None and payload.refresh_token:
        revoked = revoke_refresh_token(db, ctx.user.id, payload.refresh_token)
    else:
        revoked = revoke_all_refresh_tokens(db, ctx.user.id)
    db.commit()
    deny_access_token(ctx.claims.jti, ctx.claims.expires_at)
    logger.info("logout user_id=%s revoked=%s", ctx.user.id, revoked)
    return success(
        request,
        LogoutData(logged_out=True, revoked_refresh_tokens=revoked, access_token_revoked=True),
    )


@router.post(
    "/forgot-password",
    summary="找回密码",
    description="为已注册邮箱生成重置令牌；无论邮箱是否存在都返回相同结果。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MessageData],
)
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    notifier: AccountNotifier = Depends(get_notifier),
):
    """申请重置口令。"""
    email = normalize_email(payload.email)
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is not None and user.is_active:
        credential = _get_credential(db, user)
        if credential is not None:
            reset = issue_password_reset_token()
            credential.reset_token_hash = reset.digest
            credential.reset_token_expires_at = reset.expires_at
            db.commit()
            notifier.send_password_reset(user, reset.raw)
    return success(request, MessageData(message=FORGOT_PASSWORD_MESSAGE))


@router.post(
    "/reset-password",
    summary="重置密码",
    description="使用重置令牌设置新密码，并注销该账号全部刷新令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MessageData],
    responses={400: {"model": ErrorResponse}},
)
def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """重置口令。"""
    credential = db.execute(
        select(UserCredential).where(UserCredential.reset_token_hash == digest_token(payload.token))
    ).scalar_one_or_none()
    now = utc_now()
    expires_at = as_utc(credential.reset_token_expires_at) if credential else None
    if credential is None or expires_at is None or expires_at <= now:
        raise ValidationError("重置令牌无效或已过期。", code="INVALID_RESET_TOKEN")

    user = lock_token_owner(db, credential.user_id)
    if user is None:
        raise ValidationError("重置令牌无效或已过期。", code="INVALID_RESET_TOKEN")

    credential.password_hash = hash_password(payload.new_password)
    credential.password_updated_at = now
    credential.reset_token_hash = None
    credential.reset_token_expires_at = None
    user.password_changed_at = now
    revoked = revoke_all_refresh_tokens(db, user.id)
    db.commit()
    logger.info("password reset user_id=%s revoked=%s", user.id, revoked)
    return success(request, MessageData(message="密码已重置，请使用新密码登录。"))


@router.post(
    "/change-password",
    summary="修改密码",
    description="校验当前密码后设置新密码，注销全部旧刷新令牌并返回新的令牌对。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenPairData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """修改口令。"""
    # 持有用户行锁期间完成改密与吊销，并发的刷新令牌轮换排在其后。
    user = lock_token_owner(db, ctx.user.id)
    if user is None:
        raise AuthenticationError("账号不存在或已失效。")
    credential = _get_credential(db, user)
    if credential is None or not verify_password(payload.current_password, credential.password_hash):
        raise AuthenticationError("当前密码不正确。", code="INVALID_CREDENTIALS")
    if payload.current_password == payload.new_password:
        raise ValidationError("新密码不能与当前密码相同。", code="PASSWORD_UNCHANGED")

    now = utc_now()
    credential.password_hash = hash_password(payload.new_password)
    credential.password_updated_at = now
    user.password_changed_at = now
    revoked = revoke_all_refresh_tokens(db, user.id)
    pair = _open_session(db, tokens, user, request)
    db.commit()
    deny_access_token(ctx.claims.jti, ctx.claims.expires_at)
    logger.info("password changed user_id=%s revoked=%s", user.id, revoked)
    return success(request, _pair_data(pair))


@router.post(
    "/verify-email",
    summary="验证邮箱",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MessageData],
    responses={400: {"model": ErrorResponse}},
)
def verify_email(
    payload: VerifyEmailRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """使用邮箱验证令牌完成验证。"""
    credential = db.execute(
        select(UserCredential).where(UserCredential.email_verification_hash == digest_token(payload.token))
    ).scalar_one_or_none()
    expires_at = as_utc(credential.email_verification_expires_at) if credential else None
    if credential is None or expires_at is None or expires_at <= utc_now():
        raise ValidationError("邮箱验证令牌无效或已过期。", code="INVALID_VERIFICATION_TOKEN")

    user = db.get(User, credential.user_id)
    if user is None:
        raise ValidationError("邮箱验证令牌无效或已过期。", code="INVALID_VERIFICATION_TOKEN")
    user.is_email_verified = True
    credential.email_verification_hash = None
    credential.email_verification_expires_at = None
    db.commit()
    return success(request, MessageData(message="邮箱验证成功。"))


@router.get(
    "/me",
    summary="获取当前身份",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PrincipalData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def me(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """返回当前账号信息。"""
    return success(request, PrincipalData.model_validate(ctx.user))


@router.get(
    "/verify-token",
    summary="校验访问令牌",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[VerifyTokenData],
    responses={401: {"model": ErrorResponse}},
)
def verify_token(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """访问令牌有效时返回其主体与过期时间。"""
    return success(
        request,
        VerifyTokenData(
            valid=True,
            user_id=ctx.user.id,
            role=ctx.user.role,
            expires_at=datetime.fromtimestamp(ctx.claims.expires_at, tz=timezone.utc),
        ),
    )
