"""
Booking-flow module boundary for the clinic portal.

Design intent:
- Accumulate multi-step booking selections in one persisted record.
- Keep step requirements declarative so the UI and API share one rule set.
"""
