"""
Remote collaborators of the clinic portal.

Design intent:
- Wrap the clinic REST API behind typed calls.
- Keep transport errors in one exception type for page-level callers.
"""
