"""
Persistence and schema-evolution layer for the digital business card platform.

The whole relational database lives in memory and is written back to a single
snapshot file. This package owns that store, the schema bootstrap and the
migrations that keep old snapshot files in step with the current schema, plus
the thin FastAPI seam through which the HTTP layer reaches the store.
"""
