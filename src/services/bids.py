"""Bid and overbid amounts users record against a PIN."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from core.db import get_session_factory
from core.exceptions import BidValidationError
from core.logging_config import get_logger
from core.models import PinBid
from core.types import PropertyIdentifier
from core.utils import utcnow
from services.property_cache import SessionFactory, dialect_insert

LOGGER = get_logger(__name__)


def normalize_amount(value: Any, field_name: str = "Bid") -> Optional[str]:
    """
    Canonical text for a money amount, or None for empty input.

    Raises:
        BidValidationError: Not a finite, non-negative number.
    """
    if value is None:
        return None
    text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise BidValidationError(f"{field_name} must be a valid number")
    if not amount.is_finite() or amount < 0:
        raise BidValidationError(f"{field_name} must be a valid number")
    return str(amount)


class BidService:
    """Read and write the ``pin_bids`` table."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory or get_session_factory()

    def get_bid(self, pin: PropertyIdentifier) -> Dict[str, Any]:
        with self.session_factory() as session:
            row = session.get(PinBid, pin.value)
            if row is None:
                return {"pin": pin.value, "bid": None, "overbid": None, "updatedAt": None}
            return row.to_dict()

    def save_bid(self, pin: PropertyIdentifier, bid: Any = None, overbid: Any = None) -> Dict[str, Any]:
        bid_value = normalize_amount(bid, "Bid")
        overbid_value = normalize_amount(overbid, "Overbid")
        values = {"pin": pin.value, "bid": bid_value, "overbid": overbid_value, "updated_at": utcnow()}
        with self.session_factory() as session:
            insert_fn = dialect_insert(session)
            if insert_fn is not None:
                stmt = insert_fn(PinBid).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["pin"],
                    set_={
                        "bid": stmt.excluded.bid,
                        "overbid": stmt.excluded.overbid,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                session.execute(stmt)
            else:
                row = session.get(PinBid, pin.value)
                if row is None:
                    session.add(PinBid(**values))
                else:
                    for key, value in values.items():
                        setattr(row, key, value)
            session.flush()
            result = session.get(PinBid, pin.value, populate_existing=True).to_dict()
        LOGGER.info(f"Saved bid for {pin}")
        return result

    def delete_bid(self, pin: PropertyIdentifier) -> bool:
        with self.session_factory() as session:
            row = session.get(PinBid, pin.value)
            if row is None:
                return False
            session.delete(row)
            return True


__all__ = ["BidService", "normalize_amount"]
