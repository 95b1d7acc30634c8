"""HTTP surface: telephony webhooks and the management API."""

from .app import create_app
from .dependencies import Components, build_components

__all__ = ["create_app", "Components", "build_components"]
