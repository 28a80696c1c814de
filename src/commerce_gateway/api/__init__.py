"""
commerce_gateway.api

API package for the commerce gateway.

Responsibilities:
- FastAPI app factory, pipeline builder and error funnel.
- API-layer dependency wiring and router modules.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer should remain thin: ordering, authorization and error mapping only.
