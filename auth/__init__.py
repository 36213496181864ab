"""auth/ -- Accounts, session tokens, and the credential lifecycle for credgate.

Layer rule: auth/ may import from core/, cache/, and notify/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
