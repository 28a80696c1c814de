"""
commerce_gateway.auth

Authentication/authorization package.

Responsibilities:
- JWT and signed-cookie helpers.
- Principal resolution (user or rider) and the role gate.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing here performs I/O; identity lookups against the store belong to route groups.
