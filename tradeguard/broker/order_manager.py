from __future__ import annotations

import math
import secrets
from dataclasses import dataclass, replace
from typing import Optional

from loguru import logger as log

from tradeguard.broker.live import Broker
from tradeguard.broker.order_store import OrderStore
from tradeguard.core.config import AppConfig
from tradeguard.core.errors import ValidationFailure
from tradeguard.core.logging import get_audit_logger
from tradeguard.core.metrics import Metrics
from tradeguard.core.types import Order, OrderRequest, Signal, Ticker
from tradeguard.core.utils import now_ms
from tradeguard.risk.sizing import compute_position_usd, compute_quantity

audit = get_audit_logger()


@dataclass
class Submission:
    order: Order
    # True when the key matched an earlier order and nothing was placed
    idempotent_hit: bool = False


class OrderManager:
    """Turns a cleared signal into at most one broker order per idempotency key.

    The broker variant (paper or live) is fixed at construction. Broker
    failures propagate to the caller; the resulting order is persisted before
    ``submit_signal`` returns.
    """

    def __init__(self, cfg: AppConfig, store: OrderStore, broker: Broker, metrics: Metrics) -> None:
        self.cfg = cfg
        self.store = store
        self.broker = broker
        self.metrics = metrics

    @staticmethod
    def create_client_order_id(symbol: str, side: str) -> str:
        return f"{symbol}-{side}-{now_ms()}-{secrets.token_hex(4)}"

    async def submit_signal(
        self,
        *,
        symbol: str,
        signal: Signal,
        ticker: Ticker,
        idempotency_key: Optional[str] = None,
    ) -> Optional[Order]:
        submission = await self.submit(symbol=symbol, signal=signal, ticker=ticker, idempotency_key=idempotency_key)
        return submission.order if submission is not None else None

    async def submit(
        self,
        *,
        symbol: str,
        signal: Signal,
        ticker: Ticker,
        idempotency_key: Optional[str] = None,
    ) -> Optional[Submission]:
        if signal.action == "HOLD":
            return None

        side = "buy" if signal.action == "BUY" else "sell"
        client_order_id = idempotency_key or self.create_client_order_id(symbol, side)

        existing = self.store.get_by_client_order_id(client_order_id)
        if existing is not None:
            log.info(f"Idempotent order request matched existing order | coid={client_order_id} oid={existing.order_id}")
            self.metrics.increment("orders.idempotent_hit")
            return Submission(existing, idempotent_hit=True)

        risk = self.cfg.risk
        target_usd = compute_position_usd(signal.confidence, risk.max_position_usd, risk.min_order_usd)
        quantity = compute_quantity(target_usd, ticker.last, risk.min_quantity)
        if not math.isfinite(quantity) or quantity <= 0:
            raise ValidationFailure(
                f"non-positive order size for {symbol}",
                {"quantity": quantity, "target_usd": target_usd, "last": ticker.last},
            )

        request = OrderRequest(
            symbol=symbol,
            side=side,
            type="market",
            quantity=quantity,
            client_order_id=client_order_id,
        )
        log.info(f"Placing order | sym={symbol} side={side} qty={quantity:.8f} usd={target_usd:.2f} coid={client_order_id}")
        order = await self.broker.place(request, ticker)

        self.store.upsert(order)
        self.metrics.increment("orders.submitted")
        audit.info({"event": "order.submitted", "client_order_id": client_order_id, "order_id": order.order_id,
                    "symbol": symbol, "side": side, "quantity": quantity, "status": order.status})
        return Submission(order)

    def record_fill(self, client_order_id: str, filled_quantity: float, avg_fill_price: float) -> Optional[Order]:
        order = self.store.get_by_client_order_id(client_order_id)
        if order is None:
            log.warning(f"Fill for unknown order | coid={client_order_id}")
            return None
        status = "filled" if filled_quantity >= order.quantity - 1e-12 else "open"
        updated = replace(
            order,
            filled_quantity=float(filled_quantity),
            avg_fill_price=float(avg_fill_price),
            status=status,
            updated_at=now_ms(),
        )
        self.store.upsert(updated)
        self.metrics.increment("orders.filled" if status == "filled" else "orders.partial_fill")
        return updated

    def mark_canceled(self, client_order_id: str, reason: Optional[str] = None) -> Optional[Order]:
        order = self.store.get_by_client_order_id(client_order_id)
        if order is None:
            return None
        if order.status in ("filled", "canceled", "rejected"):
            return order
        updated = replace(order, status="canceled", reason=reason, updated_at=now_ms())
        self.store.upsert(updated)
        self.metrics.increment("orders.canceled")
        return updated
