"""
Pydantic schema for the device configuration file.
Defines the structure and validation rules for config.json.
"""

from pydantic import BaseModel, Field, validator
from typing import List


class DeviceConfigFile(BaseModel):
    """Root structure of the device configuration file."""
    mac_addresses: List[str] = Field(..., description="BLE addresses of the sensors, only the first is used")
    poll_interval_minutes: int = Field(10, gt=0, description="Minutes between two scheduled collections")

    @validator('mac_addresses')
    def addresses_must_not_be_empty(cls, v):
        """Validate that at least one non-blank address is present."""
        addresses = [address.strip() for address in v if address and address.strip()]
        if not addresses:
            raise ValueError('No MAC addresses found in configuration')
        return addresses
