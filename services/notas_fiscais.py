from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from config import BLING_PAGE_SIZE
from services.async_utils import collect_pages, gather_in_batches
from services.bling_client import BlingClient
from services.bling_models import BlingAccount, RawProductItem
from services.contas_pagas import ClientFactory, month_date_range

LOGGER = logging.getLogger(__name__)

NFE_PATH = "/nfe"
NFE_TIPO_SAIDA = 1
DETAIL_BATCH_SIZE = 5


def _coerce_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def extract_items(itens: Optional[List[Dict[str, Any]]], account: BlingAccount) -> List[RawProductItem]:
    """Invoice lines with a product name and a positive quantity."""
    items: List[RawProductItem] = []
    for item in itens or []:
        name = str(item.get("descricao") or "")
        quantity = _coerce_float(item.get("quantidade"))
        if not name.strip() or quantity <= 0:
            continue
        items.append(
            RawProductItem(
                product_name=name,
                quantity=quantity,
                unit_price=_coerce_float(item.get("valor")),
                account=account,
            )
        )
    return items


async def fetch_product_items_for_account(
    client: BlingClient,
    account: BlingAccount,
    month: int,
    year: int,
) -> List[RawProductItem]:
    """
    Product lines of every outgoing NF-e (tipo=1) emitted in the month.

    No situacao filter: every status is included so nothing is silently dropped.
    When the list response already embeds itens they are used as-is; otherwise
    each NF-e detail is fetched, DETAIL_BATCH_SIZE at a time. A detail failure
    aborts the whole fetch.
    """
    account = BlingAccount(account)
    inicio, fim = month_date_range(month, year)

    async def _fetch_page(page: int) -> List[Dict[str, Any]]:
        response = await client.get(
            NFE_PATH,
            {
                "dataEmissaoInicial": inicio,
                "dataEmissaoFinal": fim,
                "tipo": NFE_TIPO_SAIDA,
                "pagina": page,
                "limite": BLING_PAGE_SIZE,
            },
        )
        return (response or {}).get("data") or []

    listed = await collect_pages(_fetch_page, BLING_PAGE_SIZE)

    # Repeated ids keep their first copy; entries without an id are kept as listed.
    seen = set()
    nfes: List[Dict[str, Any]] = []
    for nfe in listed:
        nfe_id = nfe.get("id")
        if nfe_id is not None:
            if nfe_id in seen:
                continue
            seen.add(nfe_id)
        nfes.append(nfe)

    if not nfes:
        LOGGER.info("[NotasFiscais] No NF-e found for account %s, %02d/%s", int(account), month, year)
        return []

    LOGGER.info("[NotasFiscais] Found %s NF-e(s) for account %s", len(nfes), int(account))

    # The API either embeds itens for every listed NF-e or for none of them.
    if any(nfe.get("itens") for nfe in nfes):
        LOGGER.info("[NotasFiscais] List response includes items, extracting directly")
        return [item for nfe in nfes for item in extract_items(nfe.get("itens"), account)]

    with_id = [nfe for nfe in nfes if nfe.get("id") is not None]
    if len(with_id) < len(nfes):
        LOGGER.warning(
            "[NotasFiscais] Account %s: %s NF-e(s) without id cannot be detailed, skipping",
            int(account),
            len(nfes) - len(with_id),
        )
    LOGGER.info("[NotasFiscais] List has no items, fetching %s detail(s)...", len(with_id))

    async def _fetch_detail(nfe: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.get(f"{NFE_PATH}/{nfe['id']}")
        return (response or {}).get("data") or {}

    details = await gather_in_batches(_fetch_detail, with_id, DETAIL_BATCH_SIZE)
    items = [item for detail in details for item in extract_items(detail.get("itens"), account)]

    if not items:
        LOGGER.warning(
            "[NotasFiscais] %s NF-e(s) found but 0 items extracted. First NF-e sample: %s",
            len(nfes),
            json.dumps(nfes[0], default=str)[:500],
        )
    return items


def _default_client_factory(account: BlingAccount) -> BlingClient:
    return BlingClient(account)


async def fetch_all_accounts_product_items(
    accounts: Iterable[BlingAccount],
    month: int,
    year: int,
    *,
    client_factory: ClientFactory = _default_client_factory,
) -> List[RawProductItem]:
    """NF-e product lines of every account, fetched concurrently and flattened in account order."""
    accounts = [BlingAccount(account) for account in accounts]
    results = await asyncio.gather(
        *(
            fetch_product_items_for_account(client_factory(account), account, month, year)
            for account in accounts
        )
    )
    return [item for account_items in results for item in account_items]
