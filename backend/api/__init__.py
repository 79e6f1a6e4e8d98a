from api.server import (
    create_app,
    lifespan,
    VERSION,
)

__all__ = [
    "create_app",
    "lifespan",
    "VERSION",
]
