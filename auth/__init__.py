"""auth/ -- Authentication and authorization package for Neóptica.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, audit/, or catalog/.
api/ imports from auth/, not the other way around.
"""
