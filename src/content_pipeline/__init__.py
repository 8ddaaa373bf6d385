"""Content status pipeline for the automated video production workflow.

This package tracks discovered content items through idea selection,
script generation, review, asset gathering, and rendering, providing:
- A closed status graph and legacy value normalization
- Audited, transactional stage transitions and all-or-nothing batches
- Read-side queries: history, stage listings, distribution, stuck items
- Status events for logging and Prometheus metrics
- A FastAPI service exposing the above
"""
