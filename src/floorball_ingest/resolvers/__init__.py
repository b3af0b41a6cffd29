# src/floorball_ingest/resolvers/__init__.py
