"""
Notification subsystem.

Components:
- events.py: queue payloads and their parser
- queue_store.py: SQLite queue with visibility timeout and dead-letter queue
- directory_store.py: user directory (email lookup, paged listing by org)
- delivery.py: delivery channels (log, HTTP)
- messages.py: subject/body composition per event type
- dispatcher.py: batch processing with partial-failure reporting
- consumer.py: polling loop that feeds batches to the dispatcher
"""
