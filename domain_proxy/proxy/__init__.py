from .resolver import resolve
from .route import forward_to_target, router

__all__ = ["resolve", "forward_to_target", "router"]
