"""
Feed Relay - real-time feed monitoring with notification delivery.

This package streams third-party push feeds, such as the Binance
announcement websocket, and forwards new items to a notification channel.
"""

__version__ = "1.0.0"
__author__ = "Feed Relay Team"
