"""
Sparkboard background pipeline.

Subpackages:
- items: item model, single-table store, reconciliation job, interactive helpers
- notifications: queue, directory, delivery channels, dispatcher and consumer
- core: shared ports, permissions and application state
- cli: composition root and the `sparkboard` command
"""
