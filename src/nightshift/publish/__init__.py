"""Artifact selection and release-channel publishing."""

from nightshift.publish.artifacts import select_artifacts
from nightshift.publish.release import (
    PublishReport,
    ReleaseClient,
    ReleasePublisher,
    UploadOutcome,
)

__all__ = [
    "PublishReport",
    "ReleaseClient",
    "ReleasePublisher",
    "UploadOutcome",
    "select_artifacts",
]
