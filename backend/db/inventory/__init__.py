"""
Stock ledger (per product, per location).

Models:
- StockRecord (on-hand and reserved quantity per product per location)
- StockTransaction (append-only log, one row per ledger mutation)
"""
