"""History sync infrastructure.

Modules:
    reconciler — ReconciliationEngine (enrich / import / cleanup passes)
    dedup      — Identity and same-day proximity deduplication
    scheduler  — Per-account serialized sync scheduler
"""
