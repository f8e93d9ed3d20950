"""SQLAlchemy models for the COD carrier settlement engine."""

from cod_settlements.models.carrier import Carrier, CarrierCoverage, CarrierZone
from cod_settlements.models.order import Order
from cod_settlements.models.dispatch import DispatchSession, SessionOrder
from cod_settlements.models.settlement import Settlement
from cod_settlements.models.payment import CarrierPayment
from cod_settlements.models.ledger import CarrierMovement, PaymentAllocation
from cod_settlements.models.sequence import SequenceCounter

__all__ = [
    "Carrier",
    "CarrierCoverage",
    "CarrierZone",
    "Order",
    "DispatchSession",
    "SessionOrder",
    "Settlement",
    "CarrierPayment",
    "CarrierMovement",
    "PaymentAllocation",
    "SequenceCounter",
]
