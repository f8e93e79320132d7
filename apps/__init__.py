"""
Apps package - runnable services.

This package contains:
- order_engine: signal-driven order creation, simulated mark-to-market and
  reconciliation against the Binance futures testnet
"""
