"""Routers package."""

from . import (
    health,
    sharing,
    reporting,
)
