"""Wiki harvesting subsystem.

Structure:
- base.py: record types, category-name normalization, case-insensitive CategorySet
- client.py: MediaWiki api.php client (httpx), decodes responses into base types
- cursor.py: continuation-token pagination
- change_detector.py: skip-unchanged decision
- orchestrator.py: sequential per-site/per-category crawl into the page store
- discovery.py: category enumeration and cross-site summaries
- pipeline.py: change-gated, atomic JSON artifact writes
- host.py: background worker with start/cancel hooks
- runner.py: CLI entrypoint
"""
