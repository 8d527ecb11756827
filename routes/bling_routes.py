from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import APIRouter, FastAPI, HTTPException, Query

from auth.bling_auth import get_connected_accounts
from services.consolidate_products import consolidate_products
from services.contas_pagas import fetch_all_accounts_paid_accounts
from services.notas_fiscais import fetch_all_accounts_product_items

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bling")

INVALID_PERIOD_MESSAGE = "Parâmetros inválidos. Informe month (1-12) e year."
NO_ACCOUNT_MESSAGE = "Nenhuma conta Bling conectada. Conecte uma conta nas configurações."
CONTAS_PAGAS_ERROR_MESSAGE = "Não foi possível buscar as contas pagas. Tente novamente."
NOTAS_FISCAIS_ERROR_MESSAGE = "Não foi possível buscar as notas fiscais. Tente novamente."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_period(month: Optional[str], year: Optional[str]) -> Tuple[int, int]:
    try:
        month_value = int(str(month).strip())
        year_value = int(str(year).strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=INVALID_PERIOD_MESSAGE) from None
    if not 1 <= month_value <= 12 or not 2000 <= year_value <= 2100:
        raise HTTPException(status_code=400, detail=INVALID_PERIOD_MESSAGE)
    return month_value, year_value


async def _require_connected_accounts():
    accounts = await asyncio.to_thread(get_connected_accounts)
    if not accounts:
        raise HTTPException(status_code=422, detail=NO_ACCOUNT_MESSAGE)
    return accounts


@router.get("/contas-pagas")
async def get_contas_pagas(
    month: Optional[str] = Query(None),
    year: Optional[str] = Query(None),
) -> dict:
    month_value, year_value = _parse_period(month, year)
    try:
        accounts = await _require_connected_accounts()
        bills = await fetch_all_accounts_paid_accounts(accounts, month_value, year_value)
    except HTTPException:
        raise
    except Exception as exc:
        logger.error("[ContasPagas] Fetch failed for %02d/%s: %s", month_value, year_value, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=CONTAS_PAGAS_ERROR_MESSAGE)

    return {
        "accounts": [bill.model_dump(mode="json") for bill in bills],
        "fetched_at": _utcnow().isoformat(),
    }


@router.get("/notas-fiscais")
async def get_notas_fiscais(
    month: Optional[str] = Query(None),
    year: Optional[str] = Query(None),
) -> dict:
    month_value, year_value = _parse_period(month, year)
    try:
        accounts = await _require_connected_accounts()
        raw_items = await fetch_all_accounts_product_items(accounts, month_value, year_value)
        products = consolidate_products(raw_items)
    except HTTPException:
        raise
    except Exception as exc:
        logger.error("[NotasFiscais] Fetch failed for %02d/%s: %s", month_value, year_value, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=NOTAS_FISCAIS_ERROR_MESSAGE)

    return {
        "products": [product.model_dump(mode="json") for product in products],
        "fetched_at": _utcnow().isoformat(),
        "accounts_queried": [int(account) for account in accounts],
    }


def register_bling_routes(app: FastAPI) -> None:
    app.include_router(router)
