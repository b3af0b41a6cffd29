# src/floorball_ingest/scrapers/__init__.py
