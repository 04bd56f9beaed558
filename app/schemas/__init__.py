from .auth import Token, UserCreate, UserLogin, UserResponse

__all__ = [
    "Token",
    "UserCreate",
    "UserLogin",
    "UserResponse",
]
