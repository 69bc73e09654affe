"""
FastAPI routes for connecting, inspecting and disconnecting provider accounts.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from account_connect.core.errors import (
    AuthorizationDeniedError,
    ConnectorError,
    InvalidRequestError,
    MissingParameterError,
)
from account_connect.dependencies import (
    get_app_settings,
    get_connection_status_reporter,
    get_oauth_state_encoder,
    get_provider_registry,
    get_token_lifecycle_manager,
)
from account_connect.schemas import (
    AuthorizationResponse,
    CallbackResult,
    ConnectionStatus,
    DisconnectResponse,
    ErrorResponse,
    OAuthCallbackPayload,
    ProviderInfo,
)

router = APIRouter(
    responses={
        HTTPStatus.BAD_REQUEST.value: {"model": ErrorResponse},
        HTTPStatus.INTERNAL_SERVER_ERROR.value: {"model": ErrorResponse},
    }
)
logger = logging.getLogger(__name__)


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise MissingParameterError("userId")
    return user_id.strip()


def _wants_html(request: Request) -> bool:
    accept_header = request.headers.get("accept", "")
    return "text/html" in accept_header.lower()


def _with_query(url: str, params: dict[str, Optional[str]]) -> str:
    """Append ``params`` to ``url`` while keeping any query it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _check_redirect_target(redirect_to: Optional[str], frontend: Optional[str]) -> None:
    """Only pages on the configured front-end origin may receive the browser back."""
    if redirect_to is None:
        return
    target = urlsplit(redirect_to)
    allowed = urlsplit(frontend) if frontend else None
    if (
        allowed is None
        or (target.scheme, target.netloc.lower()) != (allowed.scheme, allowed.netloc.lower())
    ):
        raise InvalidRequestError("redirect_to must point at the configured front-end.")


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/providers", status_code=HTTPStatus.OK, response_model=list[ProviderInfo])
async def list_providers(
    registry: Annotated[Any, Depends(get_provider_registry)],
) -> list[ProviderInfo]:
    """List registered providers and whether this deployment has credentials for them."""
    return [ProviderInfo(**entry) for entry in registry.list_providers()]


@router.get("/connections", status_code=HTTPStatus.OK, response_model=list[ConnectionStatus])
async def list_connections(
    reporter: Annotated[Any, Depends(get_connection_status_reporter)],
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> list[ConnectionStatus]:
    return await reporter.report_all(_require_user_id(user_id))


@router.get("/connect/{provider}", status_code=HTTPStatus.OK)
async def start_connection(
    provider: str,
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_manager)],
    settings: Annotated[Any, Depends(get_app_settings)],
    user_id: Optional[str] = Query(
        default=None,
        alias="userId",
        description="User identifier initiating the connection.",
    ),
    redirect_to: Optional[str] = Query(
        default=None,
        description="Optional front-end URL to send the browser back to after the callback.",
    ),
    redirect: bool = Query(
        default=True,
        description="When false, return the consent URL as JSON instead of redirecting.",
    ),
) -> Response:
    """
    Kick off the OAuth flow by issuing a state token and the consent URL.
    """
    user = _require_user_id(user_id)
    _check_redirect_target(
        redirect_to, str(settings.frontend_base_url) if settings.frontend_base_url else None
    )
    authorization = await lifecycle.initiate(provider, user, redirect_to=redirect_to)
    if redirect:
        return RedirectResponse(
            url=authorization.authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    payload = AuthorizationResponse(
        authorization_url=authorization.authorization_url, state=authorization.state
    )
    return JSONResponse(content=payload.model_dump())


async def _complete_callback(
    provider: str,
    code: Optional[str],
    state: Optional[str],
    lifecycle: Any,
    state_encoder: Any,
) -> CallbackResult:
    if not code:
        raise MissingParameterError("code")
    if not state:
        raise MissingParameterError("state")
    record = await lifecycle.complete_exchange(provider, code, state)
    # The state has been verified and consumed by now; decoding again only
    # recovers the redirect target it carried.
    redirect_to = state_encoder.decode(state).get("redirect_to")
    return CallbackResult(
        provider=provider,
        email=record.email,
        redirect_to=redirect_to,
    )


@router.post("/callback/{provider}", status_code=HTTPStatus.OK, response_model=CallbackResult)
async def handle_oauth_callback(
    provider: str,
    payload: OAuthCallbackPayload,
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
) -> CallbackResult:
    """Complete the OAuth exchange for API clients posting the callback parameters."""
    return await _complete_callback(
        provider, payload.code, payload.state, lifecycle, state_encoder
    )


@router.get("/callback/{provider}", status_code=HTTPStatus.OK)
async def handle_oauth_callback_get(
    provider: str,
    request: Request,
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None, description="Authorization code."),
    state: Optional[str] = Query(default=None, description="OAuth state token."),
    error: Optional[str] = Query(
        default=None, description="Error reported by the provider instead of a code."
    ),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    browser = redirect or _wants_html(request)
    frontend = str(settings.frontend_base_url) if settings.frontend_base_url else None

    try:
        if error:
            raise AuthorizationDeniedError(
                f"Authorization was not granted ({error}). Please try connecting again."
            )
        result = await _complete_callback(provider, code, state, lifecycle, state_encoder)
    except ConnectorError as exc:
        # Only the configured front-end is trusted here; an unverified state
        # cannot supply the redirect target.
        if browser and frontend:
            logger.warning("OAuth callback for %s failed (%s)", provider, exc.kind)
            return RedirectResponse(
                url=_with_query(frontend, {"error": exc.kind, "message": exc.message}),
                status_code=HTTPStatus.TEMPORARY_REDIRECT,
            )
        raise

    redirect_target = result.redirect_to or frontend
    if redirect_target and browser:
        return RedirectResponse(
            url=_with_query(
                redirect_target, {"connected": provider, "email": result.email}
            ),
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )
    return JSONResponse(content=result.model_dump())


@router.get("/status/{provider}", status_code=HTTPStatus.OK, response_model=ConnectionStatus)
async def get_connection_status(
    provider: str,
    reporter: Annotated[Any, Depends(get_connection_status_reporter)],
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> ConnectionStatus:
    """Report whether the user's connection exists, is valid, or needs re-authentication."""
    return await reporter.report(_require_user_id(user_id), provider)


@router.api_route(
    "/disconnect/{provider}",
    methods=["POST", "DELETE"],
    status_code=HTTPStatus.OK,
    response_model=DisconnectResponse,
)
async def disconnect_provider(
    provider: str,
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_manager)],
    registry: Annotated[Any, Depends(get_provider_registry)],
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> DisconnectResponse:
    """Remove the stored connection; disconnecting twice is not an error."""
    user = _require_user_id(user_id)
    await lifecycle.disconnect(user, provider)
    return DisconnectResponse(
        message=f"{registry.display_name(provider)} connection removed for {user}"
    )


__all__ = ["router"]
