"""
Doctor-notes module boundary for the clinic portal.

Design intent:
- Hold one appointment's note form with local draft persistence.
- Keep the debounce/merge state machine free of transport concerns.
- Leave submission to the caller; the draft is a convenience, not the record.
"""
