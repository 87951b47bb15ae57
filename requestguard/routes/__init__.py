# Routes package init
"""
RequestGuard: Routes Package
==============================

Route Inventory:
    - health.py:  GET /health  (service health check)

The request pipeline itself is middleware; host applications mount their own
routers on the app returned by create_app().
"""
