"""
FastAPI Dependencies for comicstrip
"""

from app.dependencies.auth import (
    get_current_user_id,
    get_current_user_id_optional,
    verify_clerk_jwt,
)

__all__ = [
    "get_current_user_id",
    "get_current_user_id_optional",
    "verify_clerk_jwt",
]
