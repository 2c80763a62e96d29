"""
Scheduling Domain

Bookings and the per-employee timeline: slot allocation, live queue
estimates, cascading reschedules and the HTTP endpoints that expose them.

Structure:
- timeline.py     # Timeline snapshot + overlap/buffer invariants
- allocator.py    # First-fit slot allocation
- estimator.py    # Read-only queue simulation
- cascade.py      # Reschedules after cancellation or overrun
- repository.py   # Booking queries (with row locks)
- service.py      # Transactions for every booking operation
- schemas.py      # Request/response models
- router.py       # FastAPI endpoints
"""
