"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskCategory)
- task_store.py: SQLite-backed storage + query/update helpers, alert markers
- task_api.py: small high-level helpers used by the CLI
"""
