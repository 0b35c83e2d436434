"""
Apps package - host-side applications for the DuckDB notebook.

This package contains:
- notebook_host: permission store, write queue, export destinations,
  message dispatcher and the duckdb-notebook CLI
"""
