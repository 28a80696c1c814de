"""
commerce_gateway.db

Persistence bootstrap (SQLAlchemy async).

Responsibilities:
- Provide the engine/session setup used for the process lifetime.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# This package is designed to be replaceable (e.g., switching DB backends) without
# touching the request pipeline.
