# API Routes Module
from subscription_tracker.api.routes import workflows

__all__ = [
    "workflows",
]
