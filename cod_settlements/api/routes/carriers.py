"""Carrier directory endpoints: configuration, zones, coverage and fee lookup."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cod_settlements.api.deps import get_settings
from cod_settlements.core.config import Settings
from cod_settlements.core.database import get_db
from cod_settlements.models.carrier import Carrier, CarrierCoverage, CarrierZone
from cod_settlements.schemas.carrier import (
    CarrierConfigUpdate,
    CarrierCreate,
    CarrierResponse,
    CoverageCreate,
    CoverageResponse,
    FeeQuoteResponse,
    ZoneCreate,
    ZoneResponse,
    ZoneUpdate,
)
from cod_settlements.services.carriers import CarrierDirectory
from cod_settlements.services.fees.resolver import FeeResolver

router = APIRouter()


@router.post("", response_model=CarrierResponse, status_code=201)
def create_carrier(body: CarrierCreate, db: Session = Depends(get_db)) -> Carrier:
    return CarrierDirectory(db).create_carrier(**body.model_dump())


@router.get("", response_model=list[CarrierResponse])
def list_carriers(db: Session = Depends(get_db)) -> list[Carrier]:
    return CarrierDirectory(db).list_carriers()


@router.get("/{carrier_id}", response_model=CarrierResponse)
def get_carrier(carrier_id: UUID, db: Session = Depends(get_db)) -> Carrier:
    return CarrierDirectory(db).get_carrier(carrier_id)


@router.patch("/{carrier_id}/config", response_model=CarrierResponse)
def update_carrier_config(
    carrier_id: UUID,
    body: CarrierConfigUpdate,
    db: Session = Depends(get_db),
) -> Carrier:
    """Change settlement settings; dispatched sessions keep their fee snapshots."""
    return CarrierDirectory(db).update_config(
        carrier_id, **body.model_dump(exclude_unset=True)
    )


# ── Zones ────────────────────────────────────────────────────────────


@router.get("/{carrier_id}/zones", response_model=list[ZoneResponse])
def list_zones(carrier_id: UUID, db: Session = Depends(get_db)) -> list[CarrierZone]:
    return CarrierDirectory(db).list_zones(carrier_id)


@router.post("/{carrier_id}/zones", response_model=ZoneResponse, status_code=201)
def create_zone(
    carrier_id: UUID,
    body: ZoneCreate,
    db: Session = Depends(get_db),
) -> CarrierZone:
    return CarrierDirectory(db).create_zone(carrier_id, **body.model_dump())


@router.patch("/{carrier_id}/zones/{zone_id}", response_model=ZoneResponse)
def update_zone(
    carrier_id: UUID,
    zone_id: UUID,
    body: ZoneUpdate,
    db: Session = Depends(get_db),
) -> CarrierZone:
    return CarrierDirectory(db).update_zone(
        carrier_id, zone_id, **body.model_dump(exclude_unset=True)
    )


@router.delete("/{carrier_id}/zones/{zone_id}", status_code=204)
def delete_zone(
    carrier_id: UUID,
    zone_id: UUID,
    db: Session = Depends(get_db),
) -> Response:
    CarrierDirectory(db).delete_zone(carrier_id, zone_id)
    return Response(status_code=204)


# ── Coverage and fees ────────────────────────────────────────────────


@router.post("/{carrier_id}/coverage", response_model=CoverageResponse, status_code=201)
def add_coverage(
    carrier_id: UUID,
    body: CoverageCreate,
    db: Session = Depends(get_db),
) -> CarrierCoverage:
    return CarrierDirectory(db).add_coverage(carrier_id, **body.model_dump())


@router.get("/{carrier_id}/fee", response_model=FeeQuoteResponse)
def calculate_fee(
    carrier_id: UUID,
    city: Optional[str] = Query(None, description="Destination city or zone"),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> FeeQuoteResponse:
    """Resolve the fee for a destination: zone, then coverage, then default."""
    quote = FeeResolver(db, config).resolve(carrier_id, city)
    return FeeQuoteResponse(
        carrier_id=carrier_id,
        destination_city=city,
        rate=quote.rate,
        fee_source=quote.fee_source,
        zone_name=quote.zone_name,
    )
