"""Carrier fee resolver — what a carrier charges to deliver to a city.

Resolution order for a normalized destination:
  1. An active zone whose name or code matches          -> "zone"
  2. An active city-level coverage entry that matches   -> "coverage"
  3. The carrier's default rate                        -> "default"
  4. A fallback zone (named default/otros, then interior/general,
     else the cheapest active zone)                      -> "default"
  5. The global fallback rate from settings             -> "default"

The resolver only reads.  Dispatch snapshots its answer per order so later
rate edits never reach an already-dispatched session.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from cod_settlements.core.config import Settings
from cod_settlements.core.exceptions import NotFound
from cod_settlements.core.logging import get_logger
from cod_settlements.models.carrier import Carrier, CarrierCoverage, CarrierZone
from cod_settlements.services.normalizer import normalize_location_text, to_money

logger = get_logger(__name__)

# Zone names carriers use for "everywhere else", most specific first
_FALLBACK_ZONE_PRIORITY = {"default": 1, "otros": 2, "interior": 3, "general": 4}


@dataclass(frozen=True)
class FeeQuote:
    """A resolved shipping fee and where it came from."""

    rate: Decimal
    fee_source: str
    zone_name: Optional[str] = None


class FeeResolver:
    """Looks up per-order shipping fees for a (carrier, destination) pair."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config

    def resolve(self, carrier_id: uuid.UUID, destination_city: Optional[str]) -> FeeQuote:
        """Return the fee for delivering to ``destination_city``.

        Raises:
            NotFound: If the carrier does not exist.
        """
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier", carrier_id)
        return self.resolve_for(carrier, destination_city)

    def resolve_for(self, carrier: Carrier, destination_city: Optional[str]) -> FeeQuote:
        """Same as :meth:`resolve` for an already-loaded carrier."""
        target = normalize_location_text(destination_city)

        if target:
            zone = self._match_zone(carrier.id, target)
            if zone is not None:
                return FeeQuote(to_money(zone.rate), "zone", zone.zone_name)

            coverage = self._match_coverage(carrier.id, target)
            if coverage is not None:
                return FeeQuote(to_money(coverage.rate), "coverage", coverage.city)

        zone_name = None
        if carrier.default_rate is not None:
            rate = carrier.default_rate
        else:
            fallback = self._fallback_zone(carrier.id)
            if fallback is not None:
                rate, zone_name = fallback.rate, fallback.zone_name
            else:
                rate = self.config.fallback_shipping_rate

        logger.debug(
            "No zone or coverage for carrier=%s city=%r, using default rate %s",
            carrier.id,
            destination_city,
            rate,
        )
        return FeeQuote(to_money(rate), "default", zone_name)

    # ── Private helpers ──────────────────────────────────────────────

    def _active_zones(self, carrier_id: uuid.UUID) -> list[CarrierZone]:
        return (
            self.db.query(CarrierZone)
            .filter(CarrierZone.carrier_id == carrier_id)
            .filter(CarrierZone.is_active.is_(True))
            .order_by(CarrierZone.created_at, CarrierZone.zone_name)
            .all()
        )

    def _fallback_zone(self, carrier_id: uuid.UUID) -> Optional[CarrierZone]:
        """Catch-all zone by name priority, then the cheapest active zone."""
        zones = self._active_zones(carrier_id)
        if not zones:
            return None
        return min(
            zones,
            key=lambda z: (
                _FALLBACK_ZONE_PRIORITY.get(normalize_location_text(z.zone_name), 5),
                z.rate,
            ),
        )

    def _match_zone(self, carrier_id: uuid.UUID, target: str) -> Optional[CarrierZone]:
        for zone in self._active_zones(carrier_id):
            if normalize_location_text(zone.zone_name) == target:
                return zone
            if zone.zone_code and normalize_location_text(zone.zone_code) == target:
                return zone
        return None

    def _match_coverage(
        self, carrier_id: uuid.UUID, target: str
    ) -> Optional[CarrierCoverage]:
        entries = (
            self.db.query(CarrierCoverage)
            .filter(CarrierCoverage.carrier_id == carrier_id)
            .filter(CarrierCoverage.is_active.is_(True))
            .order_by(CarrierCoverage.created_at, CarrierCoverage.city)
            .all()
        )
        for entry in entries:
            if normalize_location_text(entry.city) == target:
                return entry
        return None
