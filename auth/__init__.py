"""auth/ -- Authentication and authorization package for the member portal.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or membership/.
api/ and membership/ import from auth/, not the other way around.
"""
