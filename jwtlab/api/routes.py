from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from starlette.concurrency import run_in_threadpool

from ..domain.errors import InvalidTokenError, MalformedRequestError
from ..logging_conf import get_logger
from ..service.token_service import TokenService, client_address
from .models import ErrorOut, TokenOut, TokenUsageOut, ValidationOut

router = APIRouter()
logger = get_logger("api")

_ERRORS = {
    400: {"model": ErrorOut},
    401: {"model": ErrorOut},
    404: {"model": ErrorOut},
    500: {"model": ErrorOut},
    502: {"model": ErrorOut},
}


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    peer = request.client.host if request.client else None
    ip = client_address(request.headers.get("x-forwarded-for"), peer)
    # Empty header values count as absent.
    return ip or None, request.headers.get("user-agent") or None


async def _read_form(request: Request):
    try:
        return await request.form()
    except Exception as e:
        logger.warning("form.malformed", extra={"event": "form_malformed", "path": request.url.path, "error": str(e)})
        raise MalformedRequestError("Failed to parse the form") from e


@router.get(
    "/tokens",
    response_model=list[TokenOut],
    response_model_exclude_none=True,
    responses=_ERRORS,
    summary="List every issued token",
)
def list_tokens(service: TokenService = Depends(get_token_service)) -> list[TokenOut]:
    """Return all token records, least recently updated first."""
    return [TokenOut.from_record(t) for t in service.list_all()]


@router.post(
    "/tokens",
    response_model=TokenOut,
    response_model_exclude_none=True,
    responses=_ERRORS,
    summary="Issue a new token",
)
@router.post(
    "/tokens/auth",
    response_model=TokenOut,
    response_model_exclude_none=True,
    responses=_ERRORS,
    include_in_schema=False,
)
async def issue_token(request: Request, service: TokenService = Depends(get_token_service)) -> TokenOut:
    """Sign and store a token valid for `expires_sec` seconds (default one day).

    `expires_sec` is read from the form body, falling back to the query string.
    """
    form = await _read_form(request)
    expires_sec = form.get("expires_sec") or request.query_params.get("expires_sec")
    client_ip, user_agent = _client_meta(request)
    record = await run_in_threadpool(
        service.issue,
        expires_sec=expires_sec,
        client_ip=client_ip,
        user_agent=user_agent,
    )
    return TokenOut.from_record(record)


@router.post(
    "/tokens/validate",
    response_model=ValidationOut,
    response_model_exclude_none=True,
    responses=_ERRORS,
    summary="Validate a bearer token",
)
async def validate_token(request: Request, service: TokenService = Depends(get_token_service)) -> ValidationOut:
    """Accept `Authorization: Bearer <jwt>` or a `token` form field."""
    scheme, _, credential = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        form = await _read_form(request)
        credential = form.get("token") or ""
    if not isinstance(credential, str) or not credential.strip():
        raise InvalidTokenError("Missing bearer token")

    client_ip, user_agent = _client_meta(request)
    record = await run_in_threadpool(
        service.validate,
        credential.strip(),
        client_ip=client_ip,
        user_agent=user_agent,
    )
    return ValidationOut(valid=True, token=TokenOut.from_record(record))


@router.post(
    "/tokens/{token_id}/revoke",
    response_model=TokenOut,
    response_model_exclude_none=True,
    responses=_ERRORS,
    summary="Revoke a token",
)
def revoke_token(token_id: str, service: TokenService = Depends(get_token_service)) -> TokenOut:
    """Revoke a token; repeating the call is a no-op."""
    return TokenOut.from_record(service.revoke(token_id))


@router.get(
    "/tokens/{token_id}/usages",
    response_model=list[TokenUsageOut],
    response_model_exclude_none=True,
    responses=_ERRORS,
    summary="Usage history of a token",
)
def list_usages(token_id: str, service: TokenService = Depends(get_token_service)) -> list[TokenUsageOut]:
    return [TokenUsageOut.from_record(u) for u in service.usages(token_id)]


@router.api_route("/tokens/auth", methods=["DELETE"], include_in_schema=False)
@router.api_route("/tokens/validate", methods=["DELETE"], include_in_schema=False)
def reserved_paths_not_allowed() -> None:
    # Keeps these POST-only paths from falling through to DELETE /tokens/{token_id}.
    raise HTTPException(status.HTTP_405_METHOD_NOT_ALLOWED, headers={"Allow": "POST"})


@router.delete(
    "/tokens/{token_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERRORS,
    summary="Delete a token and its usage history",
)
def delete_token(token_id: str, service: TokenService = Depends(get_token_service)) -> Response:
    service.delete(token_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
