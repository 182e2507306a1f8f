"""audit/ -- Security audit trail for FolioAdmin.

Layer rule: audit/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. It stores account ids, never Account
objects, so the two packages stay independent.
"""
