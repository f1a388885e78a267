# backend/app/__init__.py
"""
Notion Workload Dashboard backend application package.

This package contains:
- main: FastAPI application entrypoint
- notion: Notion API client, property extractors and schemas
- workload: task normalization and per-person aggregation
- connections: cookie-backed workspace connections and OAuth
"""
