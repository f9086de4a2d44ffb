"""
Order execution: single orders (order_gateway) and atomic multi-order
batches (atomic_batch).
"""
