"""Bearer-token authentication against the external identity provider."""

import logging
from typing import Optional

import httpx
from fastapi import Header, status

from patrulha.core.config import settings
from patrulha.core.database import DatabaseConnection
from patrulha.core.errors import APIException, ErrorCode, ErrorCategory
from patrulha.models.auth import CallerProfile

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

PROFILE_QUERY = """
    SELECT id::text AS id, full_name, role,
           crpm::text AS crpm, batalhao::text AS batalhao, cia::text AS cia
    FROM users
    WHERE id::text = %(user_id)s
"""


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token from an ``Authorization: Bearer`` header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise APIException(
            code=ErrorCode.AUTH_REQUIRED,
            message="Missing authorization",
            category=ErrorCategory.AUTHENTICATION,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise APIException(
            code=ErrorCode.AUTH_REQUIRED,
            message="Missing authorization",
            category=ErrorCategory.AUTHENTICATION,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return token


class IdentityClient:
    """Resolves access tokens to users through the identity provider's REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def get_user(self, token: str) -> dict:
        """
        Fetch the user that owns ``token``.

        Raises:
            APIException: 401 when the provider rejects the token, 503 when it
                cannot be reached
        """
        headers = {"Authorization": f"{BEARER_PREFIX}{token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get("/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.error("Identity provider request failed: %s", e)
            raise APIException(
                code=ErrorCode.IDENTITY_UNAVAILABLE,
                message="Identity provider unavailable",
                category=ErrorCategory.UPSTREAM,
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                retryable=True,
            ) from e

        if response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
            raise APIException(
                code=ErrorCode.AUTH_INVALID_TOKEN,
                message="Invalid token",
                category=ErrorCategory.AUTHENTICATION,
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        if response.status_code != status.HTTP_200_OK:
            logger.error("Identity provider returned HTTP %s", response.status_code)
            raise APIException(
                code=ErrorCode.IDENTITY_UNAVAILABLE,
                message="Identity provider unavailable",
                category=ErrorCategory.UPSTREAM,
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                retryable=True,
            )

        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            raise APIException(
                code=ErrorCode.AUTH_INVALID_TOKEN,
                message="Invalid token",
                category=ErrorCategory.AUTHENTICATION,
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        return user


async def fetch_caller_profile(db_conn: DatabaseConnection, user: dict) -> CallerProfile:
    """Load the caller's profile row; 404 when the user has none."""
    rows = await db_conn.execute_query(PROFILE_QUERY, {"user_id": str(user["id"])})
    if not rows:
        raise APIException(
            code=ErrorCode.PROFILE_NOT_FOUND,
            message="Profile not found",
            category=ErrorCategory.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return CallerProfile(email=user.get("email"), **rows[0])


def check_role(profile: CallerProfile) -> None:
    """Enforce ``import_allowed_roles`` when it is configured."""
    allowed = settings.import_allowed_roles
    if allowed and profile.role not in allowed:
        raise APIException(
            code=ErrorCode.AUTH_FORBIDDEN,
            message="Insufficient permissions",
            category=ErrorCategory.AUTHORIZATION,
            status_code=status.HTTP_403_FORBIDDEN,
        )


identity_client = IdentityClient(
    base_url=settings.identity_url,
    api_key=settings.identity_api_key,
    timeout=settings.identity_timeout,
)


async def get_current_caller(
    authorization: Optional[str] = Header(None),
) -> CallerProfile:
    """FastAPI dependency: authenticate the request and load the caller profile."""
    token = extract_bearer_token(authorization)
    user = await identity_client.get_user(token)
    async with DatabaseConnection.from_settings() as db_conn:
        profile = await fetch_caller_profile(db_conn, user)
    check_role(profile)
    logger.info("Authenticated caller %s (role=%s)", profile.id, profile.role)
    return profile
