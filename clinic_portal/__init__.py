"""
Clinic portal draft-persistence package.

Design intent:
- Hold client-side form state (doctor notes, booking flow) behind injected
  clock and storage ports so it can be tested without a browser.
- Keep the remote clinic API an opaque collaborator behind a typed client.
"""
