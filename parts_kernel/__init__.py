"""
Parts Kernel

A ledger-backed parts inventory for robotics team workshops:
- Stock changes only through an append-only movement ledger
- Running balance on every entry, replayable from zero
- Per-part serialized mutations (row lock + optimistic version)
- Injected approval policy for costly or sensitive movements
- Build-readiness checks for project and task templates
"""

__version__ = "0.1.0"
