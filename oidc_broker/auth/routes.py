"""
OIDC login routes.

Endpoints:
- GET  /api/login-options     : display names of the configured providers
- POST /api/oidc/auth         : begin a login, returns browser URL + session code
- GET  /api/oidc/callback     : provider redirect target, answers OK / ERROR
- GET  /api/oidc/auth-query   : client poll, answers null until the token is ready
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from ..config import get_settings
from ..models import OidcAuthRequest, OidcAuthUrl, OidcResponse, OidcUser
from ..oauth2.errors import ExchangeFailure, SessionNotFound
from .broker import AuthBroker

logger = logging.getLogger(__name__)


CALLBACK_PATH = "/api/oidc/callback"


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/api",
    tags=["login"],
)


# =============================================================================
# Dependencies
# =============================================================================

def get_broker(request: Request) -> AuthBroker:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication broker not initialized",
        )
    return broker


def get_host(request: Request) -> str:
    """
    Base URL the client used to reach this server.

    ``PUBLIC_BASE_URL`` wins; otherwise proxy headers, then the request itself.
    """
    public_base_url = get_settings().PUBLIC_BASE_URL
    if public_base_url:
        return public_base_url

    headers = request.headers
    scheme = headers.get("x-forwarded-proto", "").split(",")[0].strip() or request.url.scheme
    host = (
        headers.get("x-forwarded-host", "").split(",")[0].strip()
        or headers.get("host")
        or request.url.netloc
    )
    return f"{scheme}://{host}"


# =============================================================================
# Endpoints
# =============================================================================

@auth_router.get("/login-options", response_model=List[str])
async def login_options(request: Request) -> List[str]:
    """
    Providers the client may offer to the user.

    Configured in the file named by ``OAUTH2_CONFIG_FILE``.
    """
    broker = get_broker(request)
    return broker.registry.login_options()


@auth_router.post("/oidc/auth", response_model=OidcAuthUrl)
async def oidc_auth(request: Request, body: OidcAuthRequest) -> OidcAuthUrl:
    """
    Start an OIDC login.

    Returns the provider URL to open in a browser and the session code to
    poll with. ``code`` is ``UUID_ERROR`` when ``uuid`` is not base64 and
    both fields are empty when ``op`` is not a usable provider.

    For manual testing a uuid can be generated with ``uuidgen | base64``.
    """
    broker = get_broker(request)
    logger.debug(f"oidc_auth: id={body.id!r} op={body.op!r}")

    result = await broker.begin_auth(
        correlation_id=body.id,
        client_uuid_b64=body.uuid,
        provider_key=body.op,
        callback_url=lambda: f"{get_host(request)}{CALLBACK_PATH}",
    )
    return OidcAuthUrl(url=result.url, code=result.code)


@auth_router.get("/oidc/callback", response_class=PlainTextResponse)
async def oidc_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="Session code passed as OAuth state"),
    error: Optional[str] = Query(None, description="Error code if the user denied access"),
) -> str:
    """
    OAuth2 redirect target.

    Exchanges the authorization code and stores the issued token in the
    session. Answers ``OK`` or ``ERROR`` as plain text.
    """
    broker = get_broker(request)

    if error:
        logger.info(f"Provider reported error on callback: {error}")
        return "ERROR"
    if not code or not state:
        return "ERROR"

    try:
        await broker.handle_callback(authorization_code=code, session_code=state)
    except SessionNotFound as e:
        logger.info(f"OIDC callback for unknown session: {e}")
        return "ERROR"
    except ExchangeFailure as e:
        log = logger.warning if e.retryable else logger.error
        log(
            f"OIDC code exchange failed: {e}",
            extra={"provider": e.provider, "error_type": type(e).__name__},
        )
        return "ERROR"

    return "OK"


@auth_router.get("/oidc/auth-query", response_model=Optional[OidcResponse])
async def oidc_state(
    request: Request,
    code: str = Query(..., description="Session code returned by /oidc/auth"),
    id: str = Query(..., description="Correlation id used at begin time"),
    uuid: str = Query(..., description="Client uuid used at begin time"),
) -> Optional[OidcResponse]:
    """
    Poll an OIDC session.

    Returns null while the login is pending, and also when the session is
    unknown, expired or belongs to another client.
    """
    broker = get_broker(request)

    result = await broker.poll(code, id, uuid)
    if result is None:
        return None

    return OidcResponse(
        access_token=result.token.to_base64(),
        user=OidcUser(
            name=result.name,
            email=result.email,
            is_admin=result.is_admin,
        ),
    )
