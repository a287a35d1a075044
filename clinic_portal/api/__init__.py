"""
API orchestration boundary for the clinic portal.

Design intent:
- Expose thin, typed endpoints over the draft and booking stores.
- Map caller misuse to 4xx responses; storage trouble never surfaces as 5xx
  except for an explicit clear that could not remove the draft.
"""
