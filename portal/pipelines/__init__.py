"""Archive ingestion stages: extraction, location, reconciliation, cleanup.

Each stage is callable on its own; ``ingest.ingest_submission`` chains them
for one uploaded archive.
"""
