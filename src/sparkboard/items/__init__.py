"""
Item subsystem.

Components:
- item_models.py: typed task/announcement variants, keys and timestamps
- item_store.py: SQLite single-table store with conditional transitions
- archive_status.py: archive outcome for a task
- reconciliation.py: periodic archive / overdue cleanup / pin expiry job
- item_api.py: interactive archive, delete and complete helpers
"""
