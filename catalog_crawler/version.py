"""Central versioning and schema constants for the crawler."""

__all__ = ["__version__", "CONFIG_SCHEMA_VERSION", "CHECKPOINT_KEY"]

#: Semantic version of this codebase (bump using SemVer).
__version__ = "0.1.0"

#: Configuration schema version (increment if breaking changes to config format).
CONFIG_SCHEMA_VERSION = 1

#: Key under which the admission counter is checkpointed.
CHECKPOINT_KEY = "detailsEnqueued"
