# src/floorball_ingest/models/__init__.py
