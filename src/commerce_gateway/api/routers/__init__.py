"""
commerce_gateway.api.routers

Routers owned by the gateway itself (health, dev tooling) and the stand-in
resource routers used until a resource service is plugged in.
"""
