# cdadmin/transport/security.py
"""
Request authentication for the admin API.

The admin API sits behind the console gateway.  The gateway presents a
shared admin token as a Bearer credential and forwards the end user's
identity in ``X-User-Id`` / ``X-Org-Id`` / ``X-Org-Name``.  In production
admin routes are served on ``settings.admin_host`` only.
"""
import hmac
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from cdadmin.config import settings
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

USER_ID_HEADER = "X-User-Id"
ORG_ID_HEADER = "X-Org-Id"
ORG_NAME_HEADER = "X-Org-Name"

bearer_scheme = HTTPBearer(scheme_name="Admin Token", auto_error=False)


def require_admin_host(request: Request):
    """404 for admin routes reached through any host but the admin host (prod only)."""
    if not settings.is_production or not settings.admin_host:
        return

    request_host = request.headers.get("host", "").split(":")[0]
    if request_host != settings.admin_host:
        logger.warning(
            f"Admin endpoint accessed from wrong host: {request_host}",
            extra={"request_host": request_host, "admin_host": settings.admin_host}
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")


def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
):
    """
    Check the gateway's Bearer admin token.

    503 when no token is configured, so a misconfigured deployment
    never serves admin routes unauthenticated.
    """
    if not settings.admin_token:
        logger.critical("ADMIN_TOKEN not configured but admin endpoint accessed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable"
        )

    if credentials and hmac.compare_digest(credentials.credentials, settings.admin_token):
        return

    logger.warning(
        f"Admin auth failed: {'invalid token' if credentials else 'missing Authorization header'}",
        extra={"path": request.url.path}
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass
class Caller:
    """Identity of the end user on whose behalf the admin request is made."""
    user_id: str
    org_id: str
    org_name: str


def get_caller(request: Request) -> Caller:
    """
    Caller identity set by the upstream gateway after session auth.

    All three headers are required; a missing one means the gateway did
    not authenticate the user.
    """
    user_id = request.headers.get(USER_ID_HEADER, "")
    org_id = request.headers.get(ORG_ID_HEADER, "")
    org_name = request.headers.get(ORG_NAME_HEADER, "")

    if not (user_id and org_id and org_name):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing caller headers ({USER_ID_HEADER}, {ORG_ID_HEADER}, {ORG_NAME_HEADER})",
        )
    return Caller(user_id=user_id, org_id=org_id, org_name=org_name)
