"""Lucky money engine services"""
from .red_packet_service import LuckyMoneyEngine
from .allocation import allocate

__all__ = ['LuckyMoneyEngine', 'allocate']
