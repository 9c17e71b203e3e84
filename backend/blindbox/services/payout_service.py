# Overview: Outbound fund transfer gateways used by the refund ledger.

"""
Payout Gateway Abstraction

Each gateway implements transfer(). A gateway either returns its own
reference for the transfer or raises PayoutError; it never partially
succeeds. Registry pattern for gateway lookup by name.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List

import httpx
from flask import current_app

logger = logging.getLogger(__name__)


class PayoutError(Exception):
    """Raised by a gateway when the transfer did not happen."""


@dataclass
class PayoutRecord:
    recipient_address: str
    amount_wei: int
    reference: str
    gateway_reference: str


class BasePayoutGateway:
    """Abstract gateway interface."""
    name: str = ""

    def transfer(self, recipient_address: str, amount_wei: int, reference: str) -> str:
        raise NotImplementedError


class RecordingPayoutGateway(BasePayoutGateway):
    """
    In-process gateway: remembers every transfer.

    Used for local runs and tests. Set `fail_next` to simulate one failed
    transfer.
    """
    name = "recording"

    def __init__(self):
        self.transfers: List[PayoutRecord] = []
        self.fail_next = False

    def transfer(self, recipient_address: str, amount_wei: int, reference: str) -> str:
        if self.fail_next:
            self.fail_next = False
            raise PayoutError(f"Transfer {reference} rejected")
        gateway_reference = uuid.uuid4().hex
        self.transfers.append(PayoutRecord(recipient_address, amount_wei, reference, gateway_reference))
        return gateway_reference

    def total_to(self, recipient_address: str) -> int:
        return sum(t.amount_wei for t in self.transfers if t.recipient_address == recipient_address)


@dataclass
class HttpPayoutGateway(BasePayoutGateway):
    """POSTs the transfer as JSON to a payout relay and expects {"ok": true, "tx": "..."}."""
    url: str = ""
    timeout: float = 15
    headers: Dict[str, str] = field(default_factory=dict)
    name: str = "http"

    def transfer(self, recipient_address: str, amount_wei: int, reference: str) -> str:
        try:
            resp = httpx.post(self.url, json={
                "to": recipient_address,
                "amount_wei": str(amount_wei),
                "reference": reference,
            }, headers=self.headers, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            raise PayoutError(f"Payout relay timed out for {reference}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PayoutError(f"Payout relay error for {reference}: {exc}") from exc

        logger.info("Payout relay [%s]: %s", reference, data)
        if not data.get("ok"):
            raise PayoutError(data.get("error") or f"Payout {reference} declined")
        return str(data.get("tx") or reference)


# ── Registry ──

_GATEWAY_FACTORIES = {
    RecordingPayoutGateway.name: lambda config: RecordingPayoutGateway(),
    HttpPayoutGateway.name: lambda config: HttpPayoutGateway(
        url=config["PAYOUT_URL"],
        timeout=config["PAYOUT_TIMEOUT_SECONDS"],
    ),
}


def build_payout_gateway(config) -> BasePayoutGateway:
    name = config.get("PAYOUT_GATEWAY", RecordingPayoutGateway.name)
    factory = _GATEWAY_FACTORIES.get(name)
    if factory is None:
        raise ValueError(f"Unknown payout gateway: {name}. Must be one of {sorted(_GATEWAY_FACTORIES)}")
    return factory(config)


def get_payout_gateway() -> BasePayoutGateway:
    return current_app.extensions["payout_gateway"]


def set_payout_gateway(gateway: BasePayoutGateway) -> None:
    current_app.extensions["payout_gateway"] = gateway
