"""leaseworker - lease-based work-queue consumers for text generation."""

__version__ = "0.1.0"
