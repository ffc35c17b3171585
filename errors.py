"""
Error types raised by the marketplace handlers.

Each one is an HTTPException with a fixed status code, so routes can raise
them directly and FastAPI renders ``{"detail": message}``.
"""

from fastapi import HTTPException


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=400, detail=detail)


class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not permitted"):
        super().__init__(status_code=403, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Resource was modified concurrently"):
        super().__init__(status_code=409, detail=detail)
