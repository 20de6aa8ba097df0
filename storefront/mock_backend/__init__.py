# Mock backend for local development and tests
from .database import ConstraintViolation, MockDatabase, PRODUCTS
from .main import create_app

__all__ = [
    "ConstraintViolation",
    "MockDatabase",
    "PRODUCTS",
    "create_app",
]
