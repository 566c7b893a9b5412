# portfolio_tracker/services/auth/__init__.py
"""
Bearer-token validation.

Usage:
    from portfolio_tracker.services.auth import JWTHandler

    principal_id = JWTHandler.validate_access_token(token)
"""

from portfolio_tracker.services.auth.jwt_handler import JWTHandler

__all__ = ["JWTHandler"]
