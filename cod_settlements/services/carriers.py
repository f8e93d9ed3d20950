"""Carrier directory maintenance: carriers, zones and coverage rates."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from cod_settlements.core.exceptions import NotFound, ValidationFailed
from cod_settlements.core.logging import get_logger
from cod_settlements.models.carrier import (
    PAYMENT_SCHEDULES,
    SETTLEMENT_TYPES,
    Carrier,
    CarrierCoverage,
    CarrierZone,
)

logger = get_logger(__name__)

_CONFIG_FIELDS = (
    "name",
    "settlement_type",
    "charges_failed_attempts",
    "failed_attempt_fee_percent",
    "payment_schedule",
    "default_rate",
    "is_active",
)
_ZONE_FIELDS = ("zone_name", "zone_code", "rate", "is_active")


def _validate_config(values: dict[str, Any]) -> None:
    errors: dict[str, str] = {}
    if "settlement_type" in values and values["settlement_type"] not in SETTLEMENT_TYPES:
        errors["settlement_type"] = f"Must be one of {', '.join(SETTLEMENT_TYPES)}"
    if "payment_schedule" in values and values["payment_schedule"] not in PAYMENT_SCHEDULES:
        errors["payment_schedule"] = f"Must be one of {', '.join(PAYMENT_SCHEDULES)}"
    percent = values.get("failed_attempt_fee_percent")
    if percent is not None and not (Decimal(0) <= Decimal(percent) <= Decimal(100)):
        errors["failed_attempt_fee_percent"] = "Must be between 0 and 100"
    rate = values.get("default_rate")
    if rate is not None and Decimal(rate) < 0:
        errors["default_rate"] = "Must not be negative"
    if errors:
        raise ValidationFailed(errors)


class CarrierDirectory:
    """CRUD over carriers and the fee tables the resolver reads."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Carriers ─────────────────────────────────────────────────────

    def get_carrier(self, carrier_id: uuid.UUID) -> Carrier:
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier", carrier_id)
        return carrier

    def list_carriers(self) -> list[Carrier]:
        return self.db.query(Carrier).order_by(Carrier.name).all()

    def create_carrier(self, **values: Any) -> Carrier:
        _validate_config(values)
        carrier = Carrier(**{k: v for k, v in values.items() if k in _CONFIG_FIELDS})
        self.db.add(carrier)
        self.db.commit()
        logger.info("Carrier created: id=%s name=%r", carrier.id, carrier.name)
        return carrier

    def update_config(self, carrier_id: uuid.UUID, **values: Any) -> Carrier:
        """Change settlement configuration.

        Already-dispatched sessions keep their fee snapshots; the failed
        attempt percent is read at reconciliation time.
        """
        carrier = self.get_carrier(carrier_id)
        _validate_config(values)
        for field in _CONFIG_FIELDS:
            if field in values and values[field] is not None:
                setattr(carrier, field, values[field])
        self.db.commit()
        logger.info("Carrier config updated: id=%s fields=%s", carrier.id, sorted(values))
        return carrier

    # ── Zones ────────────────────────────────────────────────────────

    def list_zones(self, carrier_id: uuid.UUID) -> list[CarrierZone]:
        self.get_carrier(carrier_id)
        return (
            self.db.query(CarrierZone)
            .filter(CarrierZone.carrier_id == carrier_id)
            .order_by(CarrierZone.zone_name)
            .all()
        )

    def create_zone(
        self,
        carrier_id: uuid.UUID,
        zone_name: str,
        rate: Decimal,
        zone_code: Optional[str] = None,
        is_active: bool = True,
    ) -> CarrierZone:
        self.get_carrier(carrier_id)
        self._validate_zone(zone_name=zone_name, rate=rate)
        zone = CarrierZone(
            carrier_id=carrier_id,
            zone_name=zone_name.strip(),
            zone_code=zone_code.strip() if zone_code else None,
            rate=rate,
            is_active=is_active,
        )
        self.db.add(zone)
        self.db.commit()
        logger.info(
            "Zone created: carrier=%s zone=%r rate=%s", carrier_id, zone.zone_name, rate
        )
        return zone

    def update_zone(
        self, carrier_id: uuid.UUID, zone_id: uuid.UUID, **values: Any
    ) -> CarrierZone:
        zone = self._get_zone(carrier_id, zone_id)
        self._validate_zone(**values)
        for field in _ZONE_FIELDS:
            if field in values and values[field] is not None:
                setattr(zone, field, values[field])
        self.db.commit()
        logger.info("Zone updated: id=%s fields=%s", zone.id, sorted(values))
        return zone

    def delete_zone(self, carrier_id: uuid.UUID, zone_id: uuid.UUID) -> None:
        zone = self._get_zone(carrier_id, zone_id)
        self.db.delete(zone)
        self.db.commit()
        logger.info("Zone deleted: id=%s carrier=%s", zone_id, carrier_id)

    # ── Coverage ─────────────────────────────────────────────────────

    def add_coverage(
        self, carrier_id: uuid.UUID, city: str, rate: Decimal, is_active: bool = True
    ) -> CarrierCoverage:
        self.get_carrier(carrier_id)
        errors: dict[str, str] = {}
        if not city or not city.strip():
            errors["city"] = "City is required"
        if rate is None or Decimal(rate) < 0:
            errors["rate"] = "Rate must be zero or positive"
        if errors:
            raise ValidationFailed(errors)
        entry = CarrierCoverage(
            carrier_id=carrier_id, city=city.strip(), rate=rate, is_active=is_active
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    # ── Private helpers ──────────────────────────────────────────────

    def _get_zone(self, carrier_id: uuid.UUID, zone_id: uuid.UUID) -> CarrierZone:
        zone = self.db.get(CarrierZone, zone_id)
        if zone is None or zone.carrier_id != carrier_id:
            raise NotFound("Carrier zone", zone_id)
        return zone

    @staticmethod
    def _validate_zone(**values: Any) -> None:
        errors: dict[str, str] = {}
        if "zone_name" in values and (
            values["zone_name"] is None or not str(values["zone_name"]).strip()
        ):
            errors["zone_name"] = "Zone name is required"
        rate = values.get("rate")
        if rate is not None and Decimal(rate) < 0:
            errors["rate"] = "Rate must be zero or positive"
        if errors:
            raise ValidationFailed(errors)
