# Nevis Database Models
from nevis.models.base import BaseModel
from nevis.models.revoked_token import RevokedToken
from nevis.models.user import User

__all__ = [
    "BaseModel",
    "RevokedToken",
    "User",
]
