"""
Pydantic models for the UniFi Network Integration API and the Alloy discovery output
"""

from typing import Dict, Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")


# =============================================================================
# Upstream Models
# =============================================================================

class Page(BaseModel, Generic[T]):
    """Common list envelope returned by every UniFi list endpoint.

    Absent or null counters decode as 0 and an absent or null ``data`` as an
    empty list.
    """
    offset: int = 0
    limit: int = 0
    count: int = 0
    total_count: int = Field(default=0, alias="totalCount")
    data: List[T] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("offset", "limit", "count", "total_count", mode="before")
    @classmethod
    def null_counter_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("data", mode="before")
    @classmethod
    def null_data_as_empty(cls, v):
        return [] if v is None else v

    def next_offset(self) -> int:
        # count, not len(data), drives the cursor
        return self.offset + self.count

    def is_last(self) -> bool:
        return self.next_offset() >= self.total_count


class Site(BaseModel):
    id: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return "" if v is None else v


class Device(BaseModel):
    id: str = ""
    name: str = ""
    model: str = ""
    mac_address: str = Field(default="", alias="macAddress")
    state: str = ""
    ip_address: str = Field(default="", alias="ipAddress")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return "" if v is None else v


# =============================================================================
# Discovery Models
# =============================================================================

class Target(BaseModel):
    """One scrape target for Grafana Alloy's discovery.http component"""
    targets: List[str]
    labels: Dict[str, str]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_device(cls, device: Device) -> "Target":
        return cls(
            targets=[device.ip_address],
            labels={
                "device_id": device.id,
                "device_name": device.name,
                "device_model": device.model,
            },
        )
