"""BILDIT Pixel API Module - FastAPI application and routes."""

from api.server import create_app

__all__ = ["create_app"]
