from carwash.scheduling.allocator import BayAllocator
from carwash.scheduling.availability import AvailabilityService
from carwash.scheduling.conflicts import count_overlapping, overlapping_bookings, overlaps
from carwash.scheduling.rules import BookingRulePipeline

__all__ = [
    "AvailabilityService",
    "BayAllocator",
    "BookingRulePipeline",
    "overlaps",
    "overlapping_bookings",
    "count_overlapping",
]
