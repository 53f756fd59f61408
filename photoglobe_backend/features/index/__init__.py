"""
Incremental media indexing: scanner, planner, worker pool, coordinator,
enrichment scheduler and watcher.

Submodules are imported directly; this package stays import-light so the
database adapters can depend on `types` without cycles.
"""
