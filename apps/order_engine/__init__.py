"""
Order Engine - signal-driven order lifecycle and exchange reconciliation.

Turns ADX / +DI / -DI signals into simulated orders, marks them to market on
a periodic simulation loop, and keeps them consistent with the Binance
futures testnet once mirrored there.
"""

__version__ = "0.1.0"
