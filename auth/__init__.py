"""auth/ -- Credential and session-integrity package for FolioAdmin.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or audit/.
api/ imports from auth/, not the other way around.
"""
