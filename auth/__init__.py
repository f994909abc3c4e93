"""auth/ -- Authentication, session revocation, and user management.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or storage/.
api/ imports from auth/, not the other way around.
"""
