"""Counter storage adapters for request admission control.

The gates depend on the abstract store only, so the in-memory implementation
can later be replaced by a shared store without changing the HTTP layer.
"""
