"""
Services package for Feed Relay.

Contains:
- announcement_stream: Binance announcement websocket relay
"""
