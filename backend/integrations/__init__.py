"""
External collaborators package.

Interfaces the core services depend on, with their production clients:
  - Carriers   (label generation, tracking)  - REST via httpx
  - Payments   (provider webhook events)     - decoded event bodies
  - Addresses  (delivery address validation)

Usage:
    from integrations import get_carrier_client

    carrier = get_carrier_client()
    label = await carrier.generate_label(request)
"""

from integrations.addresses import AddressValidationError, AddressValidator, BasicAddressValidator
from integrations.carriers import (
    CarrierClient,
    CarrierError,
    HttpCarrierClient,
    LabelRequest,
    LabelResult,
    TrackingEvent,
    TrackingInfo,
    get_carrier_client,
)
from integrations.payments import PaymentEvent, PaymentEventType, parse_payment_event

__all__ = [
    "AddressValidationError",
    "AddressValidator",
    "BasicAddressValidator",
    "CarrierClient",
    "CarrierError",
    "HttpCarrierClient",
    "LabelRequest",
    "LabelResult",
    "TrackingEvent",
    "TrackingInfo",
    "get_carrier_client",
    "PaymentEvent",
    "PaymentEventType",
    "parse_payment_event",
]
