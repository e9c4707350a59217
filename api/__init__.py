"""
Freight lead marketplace API.

HTTP surface for offer settlement, quote timers and lead wallets.
"""

__version__ = "1.0.0"
