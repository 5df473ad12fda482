"""Delivery details and the saved-address book."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from .geocoding import build_full_address
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


@dataclass
class DeliveryDetails:
    customer_name: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: str = ""
    landmark: str = ""
    instructions: str = ""

    def stripped(self) -> "DeliveryDetails":
        return DeliveryDetails(**{k: str(v or "").strip() for k, v in asdict(self).items()})

    def full_address(self) -> str:
        return build_full_address(self.address_line1, self.address_line2, self.landmark)

    def to_dict(self) -> dict:
        return asdict(self)


class AddressBook:
    """Last used delivery details, kept next to the cart."""

    def __init__(self, storage: KeyValueStorage, key: str = "foodapp_saved_address"):
        self.storage = storage
        self.key = key

    def load(self) -> Optional[DeliveryDetails]:
        try:
            raw = self.storage.get(self.key)
            if not raw:
                return None
            data = json.loads(raw)
        except Exception as e:
            logger.warning(f"Saved address unreadable: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return DeliveryDetails(
            **{name: str(data.get(name) or "") for name in DeliveryDetails.__dataclass_fields__}
        )

    def save(self, details: DeliveryDetails) -> None:
        try:
            self.storage.set(self.key, json.dumps(details.to_dict(), ensure_ascii=False))
        except Exception as e:
            logger.warning(f"Could not save address: {e}")
