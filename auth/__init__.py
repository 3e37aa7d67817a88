"""auth/ -- Authentication, account persistence and CSRF protection for Packhouse.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/, registry/, or cache/.
api/ and web/ import from auth/, not the other way around.
"""
