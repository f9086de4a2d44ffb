"""
Remote service clients.

Subpackages:
    - polymarket: relay, order book (CLOB) and chain-read clients
"""
