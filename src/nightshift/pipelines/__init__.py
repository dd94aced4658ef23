"""Pipeline catalog: built-in actions and the nightly pipeline."""

from nightshift.pipelines.actions import (
    BUILTIN_ACTIONS,
    CheckoutAction,
    RustToolchainAction,
    record_trigger,
    resolve_action,
)
from nightshift.pipelines.nightly import NIGHTLY_STAGE_ORDER, build_nightly_pipeline, nightly_triggers

__all__ = [
    "BUILTIN_ACTIONS",
    "CheckoutAction",
    "NIGHTLY_STAGE_ORDER",
    "RustToolchainAction",
    "build_nightly_pipeline",
    "nightly_triggers",
    "record_trigger",
    "resolve_action",
]
