from fastapi import FastAPI
from fastapi.testclient import TestClient

from routes import bling_auth_routes, bling_routes
from services.bling_errors import BlingRetryExhaustedError
from services.bling_models import BlingAccount, PaidAccount, RawProductItem


def _build_app() -> FastAPI:
    app = FastAPI()
    app.include_router(bling_routes.router)
    app.include_router(bling_auth_routes.router)
    return app


def _forbid_fetch(*args, **kwargs):
    raise AssertionError("fetch must not run")


def _configure_oauth(monkeypatch):
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_IDS", {1: "cid-1", 2: "cid-2"})
    monkeypatch.setattr(
        bling_auth_routes.config, "BLING_CLIENT_SECRETS", {1: "secret-1", 2: "secret-2"}
    )
    monkeypatch.setattr(bling_auth_routes.config, "BLING_REDIRECT_URI", "https://app.test/cb")


def test_contas_pagas_rejects_invalid_period_before_any_lookup(monkeypatch):
    monkeypatch.setattr(bling_routes, "get_connected_accounts", _forbid_fetch)
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_paid_accounts", _forbid_fetch)
    client = TestClient(_build_app())

    for query in ("", "?month=2", "?month=13&year=2026", "?month=abc&year=2026", "?month=2&year=1999"):
        resp = client.get(f"/api/bling/contas-pagas{query}")
        assert resp.status_code == 400, query
        assert "month (1-12)" in resp.json()["detail"]


def test_contas_pagas_without_connected_account(monkeypatch):
    monkeypatch.setattr(bling_routes, "get_connected_accounts", lambda: [])
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_paid_accounts", _forbid_fetch)
    client = TestClient(_build_app())

    resp = client.get("/api/bling/contas-pagas?month=2&year=2026")

    assert resp.status_code == 422
    assert "Nenhuma conta Bling conectada" in resp.json()["detail"]


def test_contas_pagas_success(monkeypatch):
    seen = {}

    async def _fetch(accounts, month, year):
        seen.update(accounts=list(accounts), month=month, year=year)
        return [
            PaidAccount(
                id="5-2",
                description="Aluguel",
                amount=2000.0,
                payment_date="2026-02-05",
                account=BlingAccount.TWO,
                supplier="",
            )
        ]

    monkeypatch.setattr(
        bling_routes, "get_connected_accounts", lambda: [BlingAccount.ONE, BlingAccount.TWO]
    )
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_paid_accounts", _fetch)
    client = TestClient(_build_app())

    resp = client.get("/api/bling/contas-pagas?month=2&year=2026")

    assert resp.status_code == 200
    body = resp.json()
    assert seen == {"accounts": [BlingAccount.ONE, BlingAccount.TWO], "month": 2, "year": 2026}
    assert body["accounts"] == [
        {
            "id": "5-2",
            "description": "Aluguel",
            "amount": 2000.0,
            "payment_date": "2026-02-05",
            "account": 2,
            "supplier": "",
        }
    ]
    assert body["fetched_at"]


def test_contas_pagas_hides_internal_errors(monkeypatch):
    async def _fetch(accounts, month, year):
        raise BlingRetryExhaustedError(503, 4, "secret upstream detail")

    monkeypatch.setattr(bling_routes, "get_connected_accounts", lambda: [BlingAccount.ONE])
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_paid_accounts", _fetch)
    client = TestClient(_build_app())

    resp = client.get("/api/bling/contas-pagas?month=2&year=2026")

    assert resp.status_code == 500
    assert resp.json()["detail"] == bling_routes.CONTAS_PAGAS_ERROR_MESSAGE
    assert "secret" not in resp.text


def test_notas_fiscais_consolidates_products(monkeypatch):
    async def _fetch(accounts, month, year):
        return [
            RawProductItem(product_name="Camiseta Branca", quantity=10, unit_price=50, account=1),
            RawProductItem(product_name="camiseta branca ", quantity=5, unit_price=60, account=2),
        ]

    monkeypatch.setattr(
        bling_routes, "get_connected_accounts", lambda: [BlingAccount.ONE, BlingAccount.TWO]
    )
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_product_items", _fetch)
    client = TestClient(_build_app())

    resp = client.get("/api/bling/notas-fiscais?month=3&year=2026")

    assert resp.status_code == 200
    body = resp.json()
    assert body["accounts_queried"] == [1, 2]
    assert len(body["products"]) == 1
    product = body["products"][0]
    assert product["product_name"] == "Camiseta Branca"
    assert product["quantity"] == 15
    assert product["total_value"] == 800
    assert abs(product["unit_price"] - 800 / 15) < 1e-9
    assert product["accounts"] == [1, 2]


def test_notas_fiscais_failure_returns_generic_message(monkeypatch):
    async def _fetch(accounts, month, year):
        raise RuntimeError("boom")

    monkeypatch.setattr(bling_routes, "get_connected_accounts", lambda: [BlingAccount.ONE])
    monkeypatch.setattr(bling_routes, "fetch_all_accounts_product_items", _fetch)
    client = TestClient(_build_app())

    resp = client.get("/api/bling/notas-fiscais?month=3&year=2026")

    assert resp.status_code == 500
    assert resp.json()["detail"] == bling_routes.NOTAS_FISCAIS_ERROR_MESSAGE


def test_auth_status_endpoint(monkeypatch):
    monkeypatch.setattr(
        bling_auth_routes.bling_auth,
        "get_token_status",
        lambda account: {"connected": account == BlingAccount.ONE, "last_updated": None},
    )
    client = TestClient(_build_app())

    assert client.get("/api/auth/bling/status?account=1").json() == {
        "connected": True,
        "last_updated": None,
    }
    assert client.get("/api/auth/bling/status?account=2").json()["connected"] is False
    assert client.get("/api/auth/bling/status?account=3").status_code == 400


def test_connect_redirects_with_state_cookie(monkeypatch):
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_IDS", {1: "cid-1", 2: "cid-2"})
    monkeypatch.setattr(bling_auth_routes.config, "BLING_REDIRECT_URI", "https://app.test/cb")
    client = TestClient(_build_app())

    resp = client.get("/api/auth/bling/connect?account=2", follow_redirects=False)

    assert resp.status_code == 307
    location = resp.headers["location"]
    assert location.startswith(bling_auth_routes.config.BLING_AUTHORIZE_URL)
    assert "client_id=cid-2" in location
    assert resp.cookies.get(bling_auth_routes.ACCOUNT_COOKIE) == "2"
    state = resp.cookies.get(bling_auth_routes.STATE_COOKIE)
    assert state and f"state={state}" in location


def test_connect_without_configuration(monkeypatch):
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_IDS", {1: "", 2: ""})
    client = TestClient(_build_app())

    resp = client.get("/api/auth/bling/connect?account=1", follow_redirects=False)

    assert resp.status_code == 500


def test_callback_rejects_state_mismatch(monkeypatch):
    monkeypatch.setattr(bling_auth_routes.bling_auth, "exchange_code", _forbid_fetch)
    client = TestClient(_build_app())
    client.cookies.set(bling_auth_routes.STATE_COOKIE, "expected")
    client.cookies.set(bling_auth_routes.ACCOUNT_COOKIE, "1")

    resp = client.get(
        "/api/auth/bling/callback?code=abc&state=other", follow_redirects=False
    )

    assert resp.status_code == 307
    assert "error=state_mismatch" in resp.headers["location"]


def test_callback_exchanges_code(monkeypatch):
    exchanged = {}

    def _exchange(account, code, redirect_uri):
        exchanged.update(account=account, code=code, redirect_uri=redirect_uri)

    monkeypatch.setattr(bling_auth_routes.bling_auth, "exchange_code", _exchange)
    _configure_oauth(monkeypatch)
    client = TestClient(_build_app())
    client.cookies.set(bling_auth_routes.STATE_COOKIE, "s1")
    client.cookies.set(bling_auth_routes.ACCOUNT_COOKIE, "2")

    resp = client.get("/api/auth/bling/callback?code=abc&state=s1", follow_redirects=False)

    assert resp.status_code == 307
    assert resp.headers["location"].endswith("?connected=2")
    assert exchanged == {
        "account": BlingAccount.TWO,
        "code": "abc",
        "redirect_uri": "https://app.test/cb",
    }


def test_callback_without_client_credentials_reports_config_error(monkeypatch):
    _configure_oauth(monkeypatch)
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_IDS", {1: "", 2: ""})
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_SECRETS", {1: "", 2: ""})
    monkeypatch.setattr(bling_auth_routes.bling_auth, "exchange_code", _forbid_fetch)
    client = TestClient(_build_app())
    client.cookies.set(bling_auth_routes.STATE_COOKIE, "s1")
    client.cookies.set(bling_auth_routes.ACCOUNT_COOKIE, "1")

    resp = client.get("/api/auth/bling/callback?code=abc&state=s1", follow_redirects=False)

    assert resp.status_code == 307
    assert "error=config_error" in resp.headers["location"]


def test_callback_with_missing_secret_only_reports_config_error(monkeypatch):
    _configure_oauth(monkeypatch)
    monkeypatch.setattr(bling_auth_routes.config, "BLING_CLIENT_SECRETS", {1: "secret-1", 2: ""})
    monkeypatch.setattr(bling_auth_routes.bling_auth, "exchange_code", _forbid_fetch)
    client = TestClient(_build_app())
    client.cookies.set(bling_auth_routes.STATE_COOKIE, "s1")
    client.cookies.set(bling_auth_routes.ACCOUNT_COOKIE, "2")

    resp = client.get("/api/auth/bling/callback?code=abc&state=s1", follow_redirects=False)

    assert "error=config_error" in resp.headers["location"]


def test_callback_access_denied():
    client = TestClient(_build_app())

    resp = client.get("/api/auth/bling/callback?error=access_denied", follow_redirects=False)

    assert resp.status_code == 307
    assert "error=access_denied" in resp.headers["location"]
