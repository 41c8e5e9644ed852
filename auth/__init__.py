"""auth/ -- Credential lifecycle for Gatehouse.

Accounts, one-time codes, 2FA sessions, reset tokens, the JWT pair and the
orchestrator that ties them together.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/ (notify/ only for the Notifier protocol type).
api/ imports from auth/, not the other way around.
"""
