"""
Scheduling Domain

Appointment scheduling engine: availability, reservation holds, calendar
layout and change notifications.

Structure:
```
salonbook/domain/scheduling/
├── schemas.py               # Request/response models
├── exceptions.py            # Booking error taxonomy
├── repository.py            # Database queries
├── time_calculator.py       # Interval arithmetic and time parsing
├── availability_service.py  # Bookable start times, staff day views
├── hold_service.py          # Hold create/release/confirm/sweep
├── appointment_service.py   # Status/payment updates, day calendar
├── schedule_service.py      # Weekly hours and schedule exceptions
├── layout.py                # Overlap grouping and column layout
├── notifications.py         # Redis change-notification bridge
└── router.py                # /booking endpoints
```
"""
