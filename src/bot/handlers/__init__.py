"""Handlers for the lucky money bot"""

from . import (
    chat_member,
    red_packet,
)

__all__ = [
    "chat_member",
    "red_packet",
]
