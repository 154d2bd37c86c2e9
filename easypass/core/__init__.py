"""Core payment verification logic."""
from .exceptions import EasyPassError, ErrorKind

__all__ = ["EasyPassError", "ErrorKind"]
