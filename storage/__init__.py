"""storage/ -- Sandboxed filesystem service rooted at a single directory.

Layer rule: storage/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/.
"""
