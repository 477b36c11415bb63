"""leaseworker admin API."""

from leaseworker.api.router import router

__all__ = ["router"]
