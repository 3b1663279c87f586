"""Byte transports for the chat endpoint."""

from hustle.transport.base import Transport
from hustle.transport.http import HttpTransport

__all__ = ["HttpTransport", "Transport"]
