"""Backend package: DB models, ingestion pipeline, APIs.

This package accepts uploaded ZIP archives, locates the user, transaction
and avatar files inside them, and reconciles their contents into the store.
"""
