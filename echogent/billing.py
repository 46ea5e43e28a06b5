"""Echo account balance check and top-up link."""

import json
import logging
import urllib.error
import urllib.request
import webbrowser

from . import fmt
from .report import BootstrapError

logger = logging.getLogger(__name__)

BALANCE_PATH = "/api/v1/balance"
PAYMENT_LINK_PATH = "/api/v1/stripe/payment-link"
REQUEST_TIMEOUT = 30


class EchoClient:
    """Minimal client for the two billing calls made at startup."""

    def __init__(self, api_key: str, base_url: str):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _request(self, path: str, payload: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        data = json.dumps(payload).encode() if payload is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST" if data is not None else "GET",
        )
        logger.debug("%s %s", req.get_method(), url)
        try:
            with urllib.request.urlopen(req, timeout=REQUEST_TIMEOUT) as resp:
                body = resp.read().decode()
        except urllib.error.HTTPError as e:
            raise BootstrapError(f"{url} returned HTTP {e.code}: {e.reason}")
        except urllib.error.URLError as e:
            raise BootstrapError(f"could not connect to {self.base_url}: {e.reason}")
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise BootstrapError(f"invalid JSON from {url}: {e}")

    def get_balance(self) -> float:
        data = self._request(BALANCE_PATH)
        try:
            return float(data["balance"])
        except (KeyError, TypeError, ValueError):
            raise BootstrapError(f"unexpected balance response: {data!r}")

    def create_payment_link(self, amount: float) -> str:
        data = self._request(PAYMENT_LINK_PATH, {"amount": amount})
        try:
            return data["paymentLink"]["url"]
        except (KeyError, TypeError):
            raise BootstrapError(f"unexpected payment link response: {data!r}")


def ensure_balance(client: EchoClient, min_balance: float, top_up_amount: float) -> float:
    """Print the balance and open a top-up page when it is below min_balance.

    Returns the balance. The turn loop is not blocked on payment; the model
    endpoint reports an error if the account is still empty.
    """
    balance = client.get_balance()
    fmt.balance(balance)
    if balance < min_balance:
        url = client.create_payment_link(top_up_amount)
        fmt.warning("Low balance. Opening payment link...")
        if not webbrowser.open(url):
            fmt.info(f"Top up here: {url}")
    return balance
