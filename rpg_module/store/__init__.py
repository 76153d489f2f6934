"""Redis-backed tables and the transaction they are read and written through.

Kept free of FastAPI concerns so reducers, startup code and tests share it.
"""
