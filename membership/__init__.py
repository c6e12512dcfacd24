"""membership/ -- Tenants, accounts, and the member workflow.

Layer rule: membership/ imports from auth/ and core/ only.
It does NOT import from api/. api/ calls into membership/, never the reverse.
"""
