"""
services/ — business logic.

Routers call into these modules; nothing here imports from routers.
"""
