"""auth/ -- Token lifecycle and authorization core.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. The verifier reaches cache/ only through the
SessionCache object it is handed. api/ imports from auth/, not the other way
around.
"""
