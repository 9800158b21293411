"""Core domain package for the intake engine.

Core contains cutover, deduplication, rate limiting and polling logic without
any bridge, SQLite or HTTP specific code, keeping the business logic portable.
"""
