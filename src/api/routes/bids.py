"""Bid / overbid routes."""
from __future__ import annotations

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import bid_service
from core.types import PropertyIdentifier
from services.bids import BidService

router = APIRouter()


class BidUpdate(BaseModel):
    bid: Optional[Union[str, float]] = None
    overbid: Optional[Union[str, float]] = None


@router.get("/{pin}/bids")
async def get_bids(pin: str, service: BidService = Depends(bid_service)) -> Dict[str, Any]:
    return {"success": True, "data": service.get_bid(PropertyIdentifier.parse(pin))}


@router.put("/{pin}/bids")
async def put_bids(
    pin: str,
    update: BidUpdate,
    service: BidService = Depends(bid_service),
) -> Dict[str, Any]:
    saved = service.save_bid(PropertyIdentifier.parse(pin), update.bid, update.overbid)
    return {"success": True, "data": saved}
