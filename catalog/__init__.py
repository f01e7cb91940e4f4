"""catalog/ -- Movie records owned by users.

Layer rule: catalog/ imports only stdlib + third-party libraries.
It does NOT import from api/ or auth/. api/ wires catalog records into the
auth ownership guard, not the other way around.
"""
