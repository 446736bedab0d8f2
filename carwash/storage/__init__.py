from carwash.storage.base import BookingStore, Transaction, booking_lock_key
from carwash.storage.memory import InMemoryBookingStore

__all__ = ["BookingStore", "Transaction", "InMemoryBookingStore", "booking_lock_key"]
