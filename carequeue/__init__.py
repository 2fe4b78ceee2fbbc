"""CareQueue: appointment scheduling, live queue and refund policy service."""

__version__ = "0.1.0"
