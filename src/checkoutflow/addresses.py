"""Saved shipping addresses and the checkout's current choice."""

import logging
import re
from typing import Any

from .backend import Backend
from .errors import AddressNotFoundError, BackendError, ValidationError
from .models import Address

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("phone", "address", "city", "state", "postalCode")


def validate_address_data(data: dict[str, Any]) -> dict[str, Any]:
    """
    Validate and normalize new-address input.

    Returns:
        The normalized payload (country defaults to India).

    Raises:
        ValidationError: If a required field is missing or malformed.
    """
    for name in REQUIRED_FIELDS:
        if not str(data.get(name) or "").strip():
            raise ValidationError(name, "is required")

    postal_code = str(data["postalCode"]).strip()
    if not re.match(r"^\d{6}$", postal_code):
        raise ValidationError("postalCode", "must be a 6-digit PIN code")

    phone = re.sub(r"[\s-]", "", str(data["phone"]))
    if not re.match(r"^(\+91)?\d{10}$", phone):
        raise ValidationError("phone", "must be a 10-digit mobile number")

    return {
        "phone": phone,
        "address": str(data["address"]).strip(),
        "city": str(data["city"]).strip(),
        "state": str(data["state"]).strip(),
        "postalCode": postal_code,
        "country": str(data.get("country") or "India").strip(),
        "isDefault": bool(data.get("isDefault", False)),
    }


class AddressSelector:
    """Loads the user's addresses and tracks which one checkout will ship to."""

    def __init__(self, backend: Backend):
        self._backend = backend
        self.addresses: list[Address] = []
        self.selected_id: str | None = None

    @property
    def selected(self) -> Address | None:
        if self.selected_id is None:
            return None
        for address in self.addresses:
            if address.id == self.selected_id:
                return address
        return None

    async def load(self) -> list[Address]:
        """
        Fetch saved addresses and preselect one.

        Keeps the current selection if it still exists, else picks the
        default address, else the first.
        """
        try:
            self.addresses = await self._backend.list_addresses()
        except BackendError as e:
            logger.error("Failed to load addresses: %s", e)
            raise

        if self.selected is None:
            self.selected_id = None
            default = next((a for a in self.addresses if a.is_default), None)
            chosen = default or (self.addresses[0] if self.addresses else None)
            if chosen is not None:
                self.selected_id = chosen.id
        return self.addresses

    def select(self, address_id: str) -> Address:
        """
        Choose the shipping address.

        Raises:
            AddressNotFoundError: If the ID isn't a saved address.
        """
        for address in self.addresses:
            if address.id == address_id:
                self.selected_id = address_id
                return address
        raise AddressNotFoundError(address_id)

    async def add(self, data: dict[str, Any], select: bool = True) -> Address:
        """Create an address through the backend and (by default) select it."""
        payload = validate_address_data(data)
        address = await self._backend.create_address(payload)
        self.addresses.append(address)
        if select or self.selected_id is None:
            self.selected_id = address.id
        logger.info("Address %s added", address.id)
        return address

    async def update(self, address_id: str, data: dict[str, Any]) -> Address:
        if not any(a.id == address_id for a in self.addresses):
            raise AddressNotFoundError(address_id)
        payload = validate_address_data(data)
        updated = await self._backend.update_address(address_id, payload)
        self.addresses = [updated if a.id == address_id else a for a in self.addresses]
        return updated

    async def delete(self, address_id: str) -> bool:
        """
        Delete an address.

        Returns:
            True if the deleted address was the selected one (selection is cleared).
        """
        if not any(a.id == address_id for a in self.addresses):
            raise AddressNotFoundError(address_id)
        await self._backend.delete_address(address_id)
        self.addresses = [a for a in self.addresses if a.id != address_id]
        if self.selected_id == address_id:
            self.selected_id = None
            return True
        return False

    async def set_default(self, address_id: str) -> Address:
        if not any(a.id == address_id for a in self.addresses):
            raise AddressNotFoundError(address_id)
        await self._backend.set_default_address(address_id)
        chosen = None
        for address in self.addresses:
            address.is_default = address.id == address_id
            if address.is_default:
                chosen = address
        return chosen
