# ================================================================
#  BLING OAUTH2 TOKEN MODULE
#  ---------------------------------------------------------------
#  - Store access/refresh tokens per connected account (sqlite)
#  - Hand out a currently valid access token, refreshing near expiry
#  - Exchange the authorization code from the OAuth callback
# ================================================================

import datetime
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import requests

from config import (
    BLING_CLIENT_IDS,
    BLING_CLIENT_SECRETS,
    BLING_REQUEST_TIMEOUT_SECONDS,
    BLING_TOKEN_REFRESH_BUFFER_SECONDS,
    BLING_TOKEN_URL,
)
from services.bling_errors import BlingCredentialError
from services.bling_models import BlingAccount
from services.db import list_token_accounts, load_token_row, upsert_token_row

logger = logging.getLogger("bling_auth")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_expiry(value: str) -> Optional[datetime.datetime]:
    try:
        dt = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


class BlingAuth:
    def __init__(self, db_path: Optional[Path] = None):
        self._db_path = db_path
        # Bling refresh tokens are single use; one refresh per account at a time.
        self._refresh_locks: Dict[BlingAccount, threading.Lock] = {
            account: threading.Lock() for account in BlingAccount
        }

    # ------------------------------------------------------------
    # CREDENTIALS
    # ------------------------------------------------------------
    def _client_credentials(self, account: BlingAccount) -> tuple[str, str]:
        client_id = BLING_CLIENT_IDS.get(int(account)) or ""
        client_secret = BLING_CLIENT_SECRETS.get(int(account)) or ""
        if not client_id or not client_secret:
            raise BlingCredentialError(
                f"Bling OAuth credentials not configured for account {int(account)}",
                account=int(account),
            )
        return client_id, client_secret

    def _post_token(self, account: BlingAccount, data: Dict[str, str]) -> Dict[str, object]:
        client_id, client_secret = self._client_credentials(account)
        try:
            resp = requests.post(
                BLING_TOKEN_URL,
                data=data,
                auth=(client_id, client_secret),
                headers={"Accept": "application/json"},
                timeout=BLING_REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("[BlingAuth] Token request failed for account %s: %s", int(account), exc)
            raise BlingCredentialError(
                f"Token request failed for account {int(account)}: {exc}", account=int(account)
            ) from exc

        if resp.status_code != 200:
            logger.error(
                "[BlingAuth] Token request (%s) failed for account %s: %s %s",
                data.get("grant_type"),
                int(account),
                resp.status_code,
                resp.text,
            )
            raise BlingCredentialError(
                f"Token refresh failed ({resp.status_code}): {resp.text}", account=int(account)
            )
        return resp.json()

    def _store(self, account: BlingAccount, payload: Dict[str, object]) -> str:
        now = _utcnow()
        expires_at = now + datetime.timedelta(seconds=int(payload.get("expires_in") or 0))
        access_token = str(payload["access_token"])
        upsert_token_row(
            int(account),
            access_token=access_token,
            refresh_token=str(payload["refresh_token"]),
            expires_at=expires_at.isoformat(),
            updated_at=now.isoformat(),
            db_path=self._db_path,
        )
        return access_token

    # ------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------
    def get_valid_token(self, account: BlingAccount) -> str:
        """
        Return a valid access token for the account.
        Refreshes when the token expires within BLING_TOKEN_REFRESH_BUFFER_SECONDS.
        """
        account = BlingAccount(account)
        row = load_token_row(int(account), db_path=self._db_path)
        if not row:
            raise BlingCredentialError(
                f"No token found for account {int(account)}. Please connect the account first.",
                account=int(account),
            )
        if self._is_fresh(row):
            return row["access_token"]

        with self._refresh_locks[account]:
            # Another thread may have refreshed while we waited.
            row = load_token_row(int(account), db_path=self._db_path) or row
            if self._is_fresh(row):
                return row["access_token"]

            logger.info("[BlingAuth] Refreshing access token for account %s", int(account))
            payload = self._post_token(
                account,
                {"grant_type": "refresh_token", "refresh_token": row["refresh_token"]},
            )
            return self._store(account, payload)

    def exchange_code(self, account: BlingAccount, code: str, redirect_uri: str) -> None:
        """Trade an OAuth authorization code for tokens and persist them."""
        account = BlingAccount(account)
        payload = self._post_token(
            account,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        )
        self._store(account, payload)
        logger.info("[BlingAuth] Account %s connected", int(account))

    def get_connected_accounts(self) -> List[BlingAccount]:
        accounts = []
        for number in list_token_accounts(db_path=self._db_path):
            try:
                accounts.append(BlingAccount(number))
            except ValueError:
                logger.warning("[BlingAuth] Ignoring token row for unknown account %s", number)
        return sorted(accounts)

    def get_token_status(self, account: BlingAccount) -> Dict[str, object]:
        row = load_token_row(int(account), db_path=self._db_path)
        if not row:
            return {"connected": False, "last_updated": None}
        return {"connected": True, "last_updated": row["updated_at"]}

    def _is_fresh(self, row: Dict[str, object]) -> bool:
        expires_at = _parse_expiry(str(row.get("expires_at") or ""))
        if expires_at is None:
            return False
        buffer = datetime.timedelta(seconds=BLING_TOKEN_REFRESH_BUFFER_SECONDS)
        return _utcnow() + buffer < expires_at


bling_auth = BlingAuth()


def get_valid_token(account: BlingAccount) -> str:
    return bling_auth.get_valid_token(account)


def get_connected_accounts() -> List[BlingAccount]:
    return bling_auth.get_connected_accounts()
