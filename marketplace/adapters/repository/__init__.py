"""Record storage adapters for marketplace resources.

Routes depend on the abstract repository only; the in-memory adapter keeps
the service runnable without a database.
"""
