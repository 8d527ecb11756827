from __future__ import annotations

import calendar
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from config import BLING_PAGE_SIZE
from services.async_utils import collect_pages, gather_in_batches
from services.bling_client import BlingClient
from services.bling_models import BlingAccount, PaidAccount

LOGGER = logging.getLogger(__name__)

CONTAS_PAGAR_PATH = "/contas/pagar"
SITUACAO_PAGA = 2
DETAIL_BATCH_SIZE = 2

ClientFactory = Callable[[BlingAccount], BlingClient]


def month_date_range(month: int, year: int) -> Tuple[str, str]:
    """First and last calendar day of the month as ISO dates."""
    last_day = calendar.monthrange(year, month)[1]
    return f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{last_day:02d}"


def _coerce_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _is_paid(item: Dict[str, Any]) -> bool:
    return item.get("situacao") == SITUACAO_PAGA and _coerce_float(item.get("valor")) > 0


def _build_paid_account(
    item: Dict[str, Any], detail: Optional[Dict[str, Any]], account: BlingAccount
) -> PaidAccount:
    if not isinstance(detail, dict):
        detail = {}
    description = (
        str(detail.get("historico") or "").strip()
        or str(detail.get("numeroDocumento") or "").strip()
        or f"Conta #{item['id']}"
    )
    contato = detail.get("contato") if isinstance(detail.get("contato"), dict) else {}
    return PaidAccount(
        id=f"{item['id']}-{int(account)}",
        description=description,
        amount=_coerce_float(item.get("valor")),
        payment_date=str(item.get("vencimento") or ""),
        account=account,
        supplier=str(contato.get("nome") or ""),
    )


async def fetch_paid_accounts_for_account(
    client: BlingClient,
    account: BlingAccount,
    month: int,
    year: int,
) -> List[PaidAccount]:
    """
    Paid bills (contas a pagar) for one account and month.

    1. List every bill emitted in the month (all statuses, paginated).
    2. Keep situacao=2 (paid) with a positive value.
    3. Fetch each bill's detail, DETAIL_BATCH_SIZE at a time, for historico and contato.
       A failed detail lookup does not abort the fetch; the bill keeps a fallback description.
    """
    account = BlingAccount(account)
    inicio, fim = month_date_range(month, year)

    async def _fetch_page(page: int) -> List[Dict[str, Any]]:
        response = await client.get(
            CONTAS_PAGAR_PATH,
            {
                "dataEmissaoInicial": inicio,
                "dataEmissaoFinal": fim,
                "pagina": page,
                "limite": BLING_PAGE_SIZE,
            },
        )
        return (response or {}).get("data") or []

    all_items = await collect_pages(_fetch_page, BLING_PAGE_SIZE)

    # Pages can overlap when bills shift between requests; keep the first copy.
    unique: Dict[Any, Dict[str, Any]] = {}
    without_id = 0
    for item in all_items:
        if item.get("id") is None:
            without_id += 1
            continue
        unique.setdefault(item["id"], item)
    if without_id:
        LOGGER.warning(
            "[ContasPagas] Account %s: skipped %s bill(s) without id", int(account), without_id
        )
    paid_items = [item for item in unique.values() if _is_paid(item)]

    LOGGER.info(
        "[ContasPagas] Account %s: %s total, %s paid for %02d/%s",
        int(account),
        len(all_items),
        len(paid_items),
        month,
        year,
    )
    if not paid_items:
        return []

    async def _fetch_detail(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = await client.get(f"{CONTAS_PAGAR_PATH}/{item['id']}")
        except Exception as exc:
            LOGGER.warning(
                "[ContasPagas] Detail for bill %s (account %s) unavailable: %s",
                item["id"],
                int(account),
                exc,
            )
            return None
        data = response.get("data") if isinstance(response, dict) else None
        if not isinstance(data, dict):
            LOGGER.warning(
                "[ContasPagas] Detail for bill %s (account %s) has unexpected shape, using fallback",
                item["id"],
                int(account),
            )
            return None
        return data

    details = await gather_in_batches(_fetch_detail, paid_items, DETAIL_BATCH_SIZE)
    return [
        _build_paid_account(item, detail, account)
        for item, detail in zip(paid_items, details)
    ]


def _default_client_factory(account: BlingAccount) -> BlingClient:
    return BlingClient(account)


async def fetch_all_accounts_paid_accounts(
    accounts: Iterable[BlingAccount],
    month: int,
    year: int,
    *,
    client_factory: ClientFactory = _default_client_factory,
) -> List[PaidAccount]:
    """
    Paid bills of every account, fetched one account after the other to keep
    upstream pressure bounded. Sorted by payment date, newest first.
    """
    combined: List[PaidAccount] = []
    for account in accounts:
        account = BlingAccount(account)
        client = client_factory(account)
        combined.extend(await fetch_paid_accounts_for_account(client, account, month, year))

    combined.sort(key=lambda bill: bill.payment_date, reverse=True)
    return combined
