"""Venue price adapters and fixed-point AMM math."""

from typing import Optional

from ..config import VenueConfig
from ..connector.rpc_client import RpcClient
from .base import VenueAdapter, VenueKind, VenueSnapshot
from .constant_product import ConstantProductVenue
from .concentrated import ConcentratedLiquidityVenue
from .local import LocalVenue


def build_venues(
    configs: list[VenueConfig],
    rpc: RpcClient,
    quoter_address: Optional[str] = None,
) -> list[VenueAdapter]:
    """Build adapters; each venue's index is its position in the list."""
    venues: list[VenueAdapter] = []
    for index, cfg in enumerate(configs):
        if cfg.kind == "concentrated":
            venues.append(ConcentratedLiquidityVenue(
                rpc,
                venue_id=cfg.venue_id,
                pool_address=cfg.address,
                quoter_address=quoter_address or "",
                token0=cfg.token0,
                token1=cfg.token1,
                fee=cfg.effective_fee,
                index=index,
            ))
        else:
            venues.append(ConstantProductVenue(
                rpc,
                venue_id=cfg.venue_id,
                pair_address=cfg.address,
                token0=cfg.token0,
                token1=cfg.token1,
                fee=cfg.effective_fee,
                index=index,
            ))
    return venues


__all__ = [
    "VenueAdapter",
    "VenueKind",
    "VenueSnapshot",
    "ConstantProductVenue",
    "ConcentratedLiquidityVenue",
    "LocalVenue",
    "build_venues",
]
