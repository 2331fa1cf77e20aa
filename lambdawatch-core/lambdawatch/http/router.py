from rolo.routing import (
    Router,
    route,
)

__all__ = [
    "route",
    "Router",
]
