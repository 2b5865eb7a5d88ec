"""Package integration wizard (catalog-driven, poll-based installs).

Core design goals:
- Catalog as data: packages, kinds and registry requirements live in YAML
- Idempotent manifest edits for scoped registries
- Cached tarball staging before anything is installed
- One install in flight at a time; one failure never stops the batch
- Centralized logging
"""

__all__ = []
