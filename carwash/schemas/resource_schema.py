"""Services, wash bays, and the opening calendar."""

from datetime import date, time
from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VehicleSize(IntEnum):
    """Capacity class of a vehicle, chosen at booking intake."""

    SMALL = 1
    MEDIUM = 2
    LARGE = 3


class Service(BaseModel):
    """A bookable wash offering."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    duration_minutes: int = Field(gt=0)
    price_cents: int = Field(ge=0)
    capacity: int = Field(default=1, ge=1)
    is_active: bool = True
    description: str = ""


class WashBay(BaseModel):
    """A physical bay. Accepts vehicles whose size falls in [min_capacity, max_capacity]."""

    model_config = ConfigDict(frozen=True)

    id: int
    bay_number: int
    name: str = ""
    is_enabled: bool = True
    min_capacity: VehicleSize = VehicleSize.SMALL
    max_capacity: VehicleSize = VehicleSize.LARGE

    @model_validator(mode="after")
    def _check_range(self) -> "WashBay":
        if self.min_capacity > self.max_capacity:
            raise ValueError("min_capacity must not exceed max_capacity")
        return self

    def accepts(self, size: VehicleSize) -> bool:
        return self.min_capacity <= size <= self.max_capacity


class BusinessHours(BaseModel):
    """Opening hours for one weekday (0 = Monday ... 6 = Sunday)."""

    model_config = ConfigDict(frozen=True)

    day_of_week: int = Field(ge=0, le=6)
    is_open: bool = True
    start_time: time = time(8, 0)
    end_time: time = time(18, 0)
    break_start: Optional[time] = None
    break_end: Optional[time] = None

    @model_validator(mode="after")
    def _check_window(self) -> "BusinessHours":
        if self.is_open and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be set together")
        if self.break_start is not None and self.break_end <= self.break_start:
            raise ValueError("break_end must be after break_start")
        return self

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None


class Holiday(BaseModel):
    """A calendar date with no availability at all."""

    model_config = ConfigDict(frozen=True)

    date: date
    name: str = "Holiday"
