"""Delivery address validation hook consumed by the fulfillment pipeline."""

from typing import Protocol


class AddressValidationError(Exception):
    """The address cannot be delivered to."""


class AddressValidator(Protocol):
    def validate(self, raw: str) -> str:
        """Return the normalized address or raise AddressValidationError."""
        ...


class BasicAddressValidator:
    """Whitespace normalization plus a minimal completeness check."""

    min_length = 10

    def validate(self, raw: str) -> str:
        normalized = " ".join((raw or "").split())
        if len(normalized) < self.min_length:
            raise AddressValidationError("Delivery address is incomplete")
        return normalized
