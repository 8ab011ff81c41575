"""
TRON Block API

HTTP range queries and a live WebSocket stream over the collected blocks.
"""

__version__ = "1.0.0"
