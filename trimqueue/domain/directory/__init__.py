"""
Directory Domain

Shops, employees, customers and services: read-only lookups used to
validate bookings, plus the shop/employee availability toggles.
"""
