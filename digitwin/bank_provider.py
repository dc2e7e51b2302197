from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from digitwin.errors import ExternalProviderError

logger = logging.getLogger(__name__)

PLAID_ENVIRONMENTS: dict[str, str] = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}
DEFAULT_SYNC_DAYS = 30
PAGE_SIZE = 500


@dataclass(frozen=True)
class LinkedItem:
    access_token: str
    item_id: str
    institution_id: Optional[str] = None


@dataclass(frozen=True)
class ProviderTransaction:
    """A transaction as the provider reports it.

    ``amount`` keeps the provider's sign: positive means money left the
    account, negative means money came in.
    A posted transaction that replaces an earlier pending one names it in
    ``pending_transaction_id``.
    """

    transaction_id: str
    name: str
    amount: Decimal
    date: date
    category: Optional[str] = None
    account_id: Optional[str] = None
    pending: bool = False
    pending_transaction_id: Optional[str] = None


class BankProvider(Protocol):
    def create_link_token(self, user_id: int) -> str: ...

    def exchange_public_token(self, public_token: str) -> LinkedItem: ...

    def fetch_transactions(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderTransaction]: ...


def sync_window(today: date, days: int = DEFAULT_SYNC_DAYS) -> tuple[date, date]:
    if days <= 0:
        raise ValueError("Sync window must be at least one day.")
    return today - timedelta(days=days), today


def normalize_amount(amount: Decimal) -> tuple[str, Decimal]:
    """Map a signed provider amount onto the ledger's (type, magnitude) pair."""
    if amount > 0:
        return "expense", amount
    return "income", -amount


@dataclass
class PlaidClient:
    client_id: Optional[str] = None
    secret: Optional[str] = None
    environment: str = "sandbox"
    client_name: str = "DigiTwin"
    timeout_seconds: int = 15
    base_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PlaidClient":
        return cls(
            client_id=os.getenv("PLAID_CLIENT_ID"),
            secret=os.getenv("PLAID_SECRET"),
            environment=os.getenv("PLAID_ENV", "sandbox").strip().lower(),
            client_name=os.getenv("PLAID_CLIENT_NAME", "DigiTwin"),
        )

    def create_link_token(self, user_id: int) -> str:
        payload = self._post(
            "/link/token/create",
            {
                "client_name": self.client_name,
                "user": {"client_user_id": str(user_id)},
                "products": ["transactions"],
                "country_codes": ["US"],
                "language": "en",
            },
        )
        link_token = payload.get("link_token")
        if not link_token:
            raise ExternalProviderError("No link token received from Plaid.")
        return link_token

    def exchange_public_token(self, public_token: str) -> LinkedItem:
        payload = self._post("/item/public_token/exchange", {"public_token": public_token})
        access_token = payload.get("access_token")
        item_id = payload.get("item_id")
        if not access_token or not item_id:
            raise ExternalProviderError("Plaid token exchange returned no access token.")
        return LinkedItem(access_token=access_token, item_id=item_id)

    def fetch_transactions(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderTransaction]:
        results: list[ProviderTransaction] = []
        offset = 0
        while True:
            payload = self._post(
                "/transactions/get",
                {
                    "access_token": access_token,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "options": {
                        "count": PAGE_SIZE,
                        "offset": offset,
                        "include_personal_finance_category": True,
                    },
                },
            )
            page = payload.get("transactions")
            if not isinstance(page, list):
                raise ExternalProviderError("Plaid response missing transactions.")
            results.extend(parse_transaction(item) for item in page)
            offset += len(page)
            total = payload.get("total_transactions", offset)
            if not page or offset >= total:
                return results

    def _resolve_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        try:
            return PLAID_ENVIRONMENTS[self.environment]
        except KeyError as exc:
            raise ExternalProviderError(f"Unknown Plaid environment: {self.environment}") from exc

    def _post(self, path: str, body: Mapping[str, Any]) -> dict:
        if not self.client_id or not self.secret:
            raise ExternalProviderError("Plaid client not configured.")
        url = f"{self._resolve_base_url()}{path}"
        data = json.dumps(
            {"client_id": self.client_id, "secret": self.secret, **body}
        ).encode("utf-8")
        request = Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                return json.load(response, parse_float=Decimal)
        except HTTPError as exc:
            code, message = _read_plaid_error(exc)
            logger.error("Plaid %s failed with %s: %s", path, code or exc.code, message)
            raise ExternalProviderError(message or "Plaid request failed.", code=code) from exc
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.error("Plaid %s unavailable: %s", path, exc)
            raise ExternalProviderError("Plaid API unavailable.") from exc


def parse_transaction(item: Mapping[str, Any]) -> ProviderTransaction:
    try:
        transaction_id = str(item["transaction_id"])
        amount = Decimal(str(item["amount"]))
        posted = datetime.strptime(item["date"], "%Y-%m-%d").date()
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise ExternalProviderError("Plaid returned a malformed transaction.") from exc
    name = item.get("merchant_name") or item.get("name") or "Unknown"
    return ProviderTransaction(
        transaction_id=transaction_id,
        name=name,
        amount=amount,
        date=posted,
        category=_pick_category(item),
        account_id=item.get("account_id"),
        pending=bool(item.get("pending", False)),
        pending_transaction_id=item.get("pending_transaction_id"),
    )


def _pick_category(item: Mapping[str, Any]) -> Optional[str]:
    personal = item.get("personal_finance_category")
    if isinstance(personal, Mapping) and personal.get("primary"):
        return str(personal["primary"])
    legacy = item.get("category")
    if isinstance(legacy, list) and legacy:
        return str(legacy[0])
    return None


def _read_plaid_error(exc: HTTPError) -> tuple[Optional[str], Optional[str]]:
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except (ValueError, OSError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    return payload.get("error_code"), payload.get("error_message")


@dataclass(frozen=True)
class StaticBankProvider:
    """Deterministic, in-memory provider.

    Transactions are keyed by access token; every public token exchanges to
    ``access-<public token>``.
    """

    transactions: Mapping[str, Iterable[ProviderTransaction]] = field(default_factory=dict)

    def create_link_token(self, user_id: int) -> str:
        return f"link-static-{user_id}"

    def exchange_public_token(self, public_token: str) -> LinkedItem:
        if not public_token:
            raise ExternalProviderError("Public token required.", code="INVALID_PUBLIC_TOKEN")
        return LinkedItem(access_token=f"access-{public_token}", item_id=f"item-{public_token}")

    def fetch_transactions(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderTransaction]:
        try:
            items = self.transactions[access_token]
        except KeyError as exc:
            raise ExternalProviderError("Invalid access token.", code="INVALID_ACCESS_TOKEN") from exc
        return [item for item in items if start_date <= item.date <= end_date]
