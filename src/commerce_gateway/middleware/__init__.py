"""
commerce_gateway.middleware

Cross-cutting request stages.

Responsibilities:
- Body parsing, input sanitization, signed cookies, security headers,
  compression and per-group rate limiting.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Stage ordering lives in `api.pipeline`; modules here do not know their position.
