"""
Nightshift - nightly continuous-integration pipeline engine.

Subpackages:
- nightshift.core: errors, logging, hashing, globs, secrets, settings
- nightshift.orchestration: triggers, stages, runner, plan, YAML loader
- nightshift.execution: local shell and ephemeral container executors
- nightshift.cache: cache key, snapshot store, manager
- nightshift.publish: artifact selection, release upload
- nightshift.pipelines: the nightly pipeline catalog
- nightshift.cli: ``nightshift`` command
"""

__version__ = "0.1.0"
