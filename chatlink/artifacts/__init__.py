"""
Per-principal artifact provisioning.
"""

from .client import FunctionApiClient
from .specification import (
    ARTIFACT_FUNCTION_ID,
    ArtifactLocation,
    build_artifact_specification,
    locate_artifact,
    relay_handler_source,
)

__all__ = [
    "FunctionApiClient",
    "ARTIFACT_FUNCTION_ID",
    "ArtifactLocation",
    "build_artifact_specification",
    "locate_artifact",
    "relay_handler_source",
]
