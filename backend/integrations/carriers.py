"""
Carrier Integration Client

Label generation and tracking against carrier REST APIs. Each carrier is
configured with a base URL and API key (``carrier_<name>_base_url`` /
``carrier_<name>_api_key``). Statuses are reported exactly as the carrier
returns them, normalized onto the shipment status vocabulary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings, get_settings

logger = structlog.get_logger()

SUPPORTED_CARRIERS = ("chronopost", "colissimo")

# Carrier vocabulary → shipment status
CARRIER_STATUS_MAP = {
    "label_created": "labeled",
    "labeled": "labeled",
    "picked_up": "shipped",
    "shipped": "shipped",
    "in_transit": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "delayed": "delayed",
    "exception": "delayed",
}


class CarrierError(Exception):
    """Carrier API unreachable or returned an error."""


def normalize_carrier(name: str) -> str:
    return name.strip().lower()


def normalize_status(raw: str | None) -> str | None:
    if not raw:
        return None
    return CARRIER_STATUS_MAP.get(raw.strip().lower().replace(" ", "_").replace("-", "_"))


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


# ── Payloads ──────────────────────────────────────────────────────────────


@dataclass
class LabelRequest:
    carrier: str
    reference: str
    recipient_name: str
    delivery_address: str
    sender_name: str
    sender_address: str | None = None
    bottle_count: int = 0
    service: str = "standard"


@dataclass
class LabelResult:
    tracking_number: str
    label_url: str | None = None
    estimated_delivery: datetime | None = None


@dataclass
class TrackingEvent:
    timestamp: datetime | None
    location: str | None
    description: str | None
    status: str | None


@dataclass
class TrackingInfo:
    tracking_number: str | None
    status: str
    message: str | None = None
    location: str | None = None
    estimated_delivery: datetime | None = None
    updates: list[TrackingEvent] = field(default_factory=list)


# ── Client interface ──────────────────────────────────────────────────────


class CarrierClient(ABC):
    @abstractmethod
    async def generate_label(self, request: LabelRequest) -> LabelResult:
        """Create a shipping label; raise CarrierError on failure."""
        ...

    @abstractmethod
    async def get_tracking(self, carrier: str, tracking_number: str) -> TrackingInfo:
        """Return the carrier's current view of a parcel; raise CarrierError on failure."""
        ...

    def supports(self, carrier: str) -> bool:
        return normalize_carrier(carrier) in SUPPORTED_CARRIERS


class HttpCarrierClient(CarrierClient):
    """REST client for the configured carriers."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.timeout = self.settings.carrier_timeout_seconds

    def _endpoint(self, carrier: str) -> tuple[str, dict[str, str]]:
        name = normalize_carrier(carrier)
        if name not in SUPPORTED_CARRIERS:
            raise CarrierError(f"Unsupported carrier '{carrier}'")
        config = self.settings.carrier_config(name)
        if not config["base_url"]:
            raise CarrierError(f"Carrier '{name}' is not configured")
        headers = {
            "Authorization": f"Bearer {config['api_key']}",
            "Content-Type": "application/json",
        }
        return config["base_url"].rstrip("/"), headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, url: str, headers: dict, json: dict | None = None) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, headers=headers, json=json)
            response.raise_for_status()
            return response.json()

    async def _call(self, carrier: str, method: str, path: str, json: dict | None = None) -> dict:
        base_url, headers = self._endpoint(carrier)
        try:
            data = await self._request(method, f"{base_url}{path}", headers, json)
        except httpx.HTTPError as exc:
            logger.error("carrier.request_failed", carrier=carrier, path=path, error=str(exc))
            raise CarrierError(f"{carrier} API error: {exc}") from exc
        except ValueError as exc:
            logger.error("carrier.invalid_response", carrier=carrier, path=path, error=str(exc))
            raise CarrierError(f"{carrier} returned a non-JSON response") from exc
        if not isinstance(data, dict):
            logger.error("carrier.invalid_response", carrier=carrier, path=path, body_type=type(data).__name__)
            raise CarrierError(f"{carrier} returned an unexpected response body")
        return data

    async def generate_label(self, request: LabelRequest) -> LabelResult:
        data = await self._call(
            request.carrier,
            "POST",
            "/shipping/labels",
            json={
                "shipper": {"name": request.sender_name, "address": request.sender_address},
                "recipient": {"name": request.recipient_name, "address": request.delivery_address},
                "packages": [{"description": f"{request.bottle_count} bottles of wine"}],
                "service": request.service,
                "reference": request.reference,
            },
        )
        tracking_number = data.get("tracking_number")
        if not tracking_number:
            raise CarrierError(f"{request.carrier} returned no tracking number")
        return LabelResult(
            tracking_number=tracking_number,
            label_url=data.get("label_url"),
            estimated_delivery=_parse_datetime(data.get("estimated_delivery")),
        )

    async def get_tracking(self, carrier: str, tracking_number: str) -> TrackingInfo:
        data = await self._call(carrier, "GET", f"/tracking/{tracking_number}")
        raw_status = data.get("status")
        status = normalize_status(raw_status)
        if status is None:
            raise CarrierError(f"{carrier} reported unknown status '{raw_status}'")
        events = [
            TrackingEvent(
                timestamp=_parse_datetime(event.get("timestamp")),
                location=event.get("location"),
                description=event.get("description"),
                status=event.get("status"),
            )
            for event in data.get("events") or []
        ]
        return TrackingInfo(
            tracking_number=data.get("tracking_number", tracking_number),
            status=status,
            location=events[-1].location if events else None,
            estimated_delivery=_parse_datetime(data.get("estimated_delivery")),
            updates=events,
        )


def get_carrier_client() -> CarrierClient:
    return HttpCarrierClient()
