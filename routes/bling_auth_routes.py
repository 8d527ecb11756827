from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

import config
from auth.bling_auth import bling_auth
from services.bling_errors import BlingCredentialError
from services.bling_models import BlingAccount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/bling")

STATE_COOKIE = "bling_oauth_state"
ACCOUNT_COOKIE = "bling_oauth_account"
STATE_COOKIE_MAX_AGE = 600  # seconds
INVALID_ACCOUNT_MESSAGE = "Invalid account parameter. Expected: account=1 or account=2"


def _parse_account(account: Optional[str]) -> BlingAccount:
    try:
        return BlingAccount.parse(account)
    except ValueError:
        raise HTTPException(status_code=400, detail=INVALID_ACCOUNT_MESSAGE) from None


def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{config.SETTINGS_URL}?{urlencode(params)}", status_code=307)


@router.get("/connect")
def connect(request: Request, account: Optional[str] = Query(None)) -> RedirectResponse:
    selected = _parse_account(account)
    client_id = config.BLING_CLIENT_IDS.get(int(selected))
    if not client_id or not config.BLING_REDIRECT_URI:
        raise HTTPException(status_code=500, detail="Bling OAuth credentials not configured")

    state = secrets.token_hex(32)
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": config.BLING_REDIRECT_URI,
        "state": state,
    }
    response = RedirectResponse(f"{config.BLING_AUTHORIZE_URL}?{urlencode(params)}", status_code=307)
    secure = request.url.scheme == "https"
    for name, value in ((STATE_COOKIE, state), (ACCOUNT_COOKIE, str(int(selected)))):
        response.set_cookie(
            name,
            value,
            max_age=STATE_COOKIE_MAX_AGE,
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    if error == "access_denied":
        return _settings_redirect(error="access_denied", message="Autorização negada pelo usuário")
    if not code or not state:
        return _settings_redirect(error="invalid_callback", message="Parâmetros inválidos no callback")

    saved_state = request.cookies.get(STATE_COOKIE)
    if not saved_state or not secrets.compare_digest(saved_state, state):
        return _settings_redirect(error="state_mismatch", message="Falha na validação CSRF")

    try:
        account = BlingAccount.parse(request.cookies.get(ACCOUNT_COOKIE))
    except ValueError:
        return _settings_redirect(error="invalid_account", message="Conta não identificada no callback")

    if not (
        config.BLING_CLIENT_IDS.get(int(account))
        and config.BLING_CLIENT_SECRETS.get(int(account))
        and config.BLING_REDIRECT_URI
    ):
        return _settings_redirect(
            error="config_error",
            message=f"Credenciais Bling não configuradas para conta {int(account)}",
        )

    try:
        await asyncio.to_thread(bling_auth.exchange_code, account, code, config.BLING_REDIRECT_URI)
    except BlingCredentialError as exc:
        logger.error("[BlingAuth] Token exchange failed for account %s: %s", int(account), exc)
        response = _settings_redirect(
            error="token_exchange_failed",
            message=f"Falha na troca de token conta {int(account)}",
        )
    except Exception as exc:
        logger.error("[BlingAuth] Storing tokens failed for account %s: %s", int(account), exc, exc_info=True)
        response = _settings_redirect(
            error="storage_failed",
            message=f"Falha ao salvar tokens conta {int(account)}",
        )
    else:
        response = _settings_redirect(connected=str(int(account)))

    response.delete_cookie(STATE_COOKIE, path="/")
    response.delete_cookie(ACCOUNT_COOKIE, path="/")
    return response


@router.get("/status")
def status(account: Optional[str] = Query(None)) -> dict:
    selected = _parse_account(account)
    return bling_auth.get_token_status(selected)


def register_bling_auth_routes(app: FastAPI) -> None:
    app.include_router(router)
