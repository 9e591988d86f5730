# API routes
from src.api.routes import entitlements

__all__ = ["entitlements"]
