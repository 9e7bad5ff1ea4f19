from .booking import (
    AddOn,
    Booking,
    BookingStatus,
    Customer,
    NotificationState,
    PayloadShape,
    Schedule,
    StaffAssignments,
)

__all__ = [
    "AddOn", "Booking", "BookingStatus", "Customer", "NotificationState",
    "PayloadShape", "Schedule", "StaffAssignments",
]
