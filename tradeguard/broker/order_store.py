from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Protocol

from tradeguard.core.types import OPEN_STATUSES, Order
from tradeguard.monitor.storage import StorageManager

_COLUMNS = (
    "order_id, client_order_id, symbol, side, type, quantity, price, status, "
    "filled_quantity, avg_fill_price, reason, created_at, updated_at"
)


class OrderStore(Protocol):
    def upsert(self, order: Order) -> None: ...

    def get_by_client_order_id(self, client_order_id: str) -> Optional[Order]: ...


def _row_to_order(r: tuple) -> Order:
    return Order(
        order_id=str(r[0]),
        client_order_id=str(r[1]),
        symbol=str(r[2]),
        side=r[3],
        type=r[4],
        quantity=float(r[5]),
        price=float(r[6]) if r[6] is not None else None,
        status=r[7],
        filled_quantity=float(r[8]),
        avg_fill_price=float(r[9]) if r[9] is not None else None,
        reason=r[10],
        created_at=int(r[11]),
        updated_at=int(r[12]),
    )


class SqliteOrderStore:
    """Durable orders keyed by ``client_order_id``. Rows are updated, never deleted."""

    def __init__(self, storage: StorageManager) -> None:
        self.storage = storage

    def upsert(self, order: Order) -> None:
        self.storage.execute(
            f"""
            INSERT INTO orders ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(client_order_id) DO UPDATE SET
                order_id = excluded.order_id,
                symbol = excluded.symbol,
                side = excluded.side,
                type = excluded.type,
                quantity = excluded.quantity,
                price = excluded.price,
                status = excluded.status,
                filled_quantity = excluded.filled_quantity,
                avg_fill_price = excluded.avg_fill_price,
                reason = excluded.reason,
                updated_at = excluded.updated_at
            """,
            (
                order.order_id,
                order.client_order_id,
                order.symbol,
                order.side,
                order.type,
                float(order.quantity),
                order.price,
                order.status,
                float(order.filled_quantity),
                order.avg_fill_price,
                order.reason,
                int(order.created_at),
                int(order.updated_at),
            ),
        )

    def get_by_client_order_id(self, client_order_id: str) -> Optional[Order]:
        row = self.storage.fetchone(f"SELECT {_COLUMNS} FROM orders WHERE client_order_id = ?", (client_order_id,))
        return _row_to_order(row) if row else None

    def get_by_order_id(self, order_id: str) -> Optional[Order]:
        row = self.storage.fetchone(f"SELECT {_COLUMNS} FROM orders WHERE order_id = ?", (order_id,))
        return _row_to_order(row) if row else None

    def list_orders(self, *, status: Optional[str] = None, symbol: Optional[str] = None) -> List[Order]:
        q = f"SELECT {_COLUMNS} FROM orders"
        conds = []
        args: list = []
        if status:
            conds.append("status = ?")
            args.append(status)
        if symbol:
            conds.append("symbol = ?")
            args.append(symbol)
        if conds:
            q += " WHERE " + " AND ".join(conds)
        q += " ORDER BY created_at ASC"
        return [_row_to_order(r) for r in self.storage.fetchall(q, tuple(args))]

    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [o for o in self.list_orders(symbol=symbol) if o.status in OPEN_STATUSES]

    def count(self) -> int:
        row = self.storage.fetchone("SELECT COUNT(*) FROM orders")
        return int(row[0]) if row else 0


class InMemoryOrderStore:
    def __init__(self) -> None:
        self._by_client_id: Dict[str, Order] = {}

    def upsert(self, order: Order) -> None:
        self._by_client_id[order.client_order_id] = replace(order)

    def get_by_client_order_id(self, client_order_id: str) -> Optional[Order]:
        order = self._by_client_id.get(client_order_id)
        return replace(order) if order is not None else None

    def get_by_order_id(self, order_id: str) -> Optional[Order]:
        for order in self._by_client_id.values():
            if order.order_id == order_id:
                return replace(order)
        return None

    def list_orders(self, *, status: Optional[str] = None, symbol: Optional[str] = None) -> List[Order]:
        return [
            replace(o)
            for o in self._by_client_id.values()
            if (status is None or o.status == status) and (symbol is None or o.symbol == symbol)
        ]

    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [o for o in self.list_orders(symbol=symbol) if o.status in OPEN_STATUSES]

    def count(self) -> int:
        return len(self._by_client_id)
