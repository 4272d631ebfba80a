"""Specification of the per-principal relay artifact.

Each linked principal gets its own function on the hosting platform. The
function may only call back into the connector's notification operation for
its own vendor user, and every caller of the function must itself hold
``function:execute`` on it.
"""

import hashlib
from dataclasses import dataclass
from importlib import resources
from typing import Any, Dict

from ..authz.resources import function_resource, notification_resource
from ..config import ConnectorConfig
from ..link.records import DurableLinkRecord

ARTIFACT_FUNCTION_ID = "link-handler"


@dataclass(frozen=True)
class ArtifactLocation:
    boundary_id: str
    function_id: str


def locate_artifact(principal_id: str) -> ArtifactLocation:
    """Boundary and function id of the artifact provisioned for a chat principal."""
    digest = hashlib.sha1(principal_id.encode("utf-8")).hexdigest()[:40]
    return ArtifactLocation(boundary_id=f"chat-user-{digest}", function_id=ARTIFACT_FUNCTION_ID)


def relay_handler_source() -> str:
    return resources.files(__package__).joinpath("templates/relay_handler.py.tmpl").read_text(encoding="utf-8")


def build_artifact_specification(
    config: ConnectorConfig,
    link: DurableLinkRecord,
    location: ArtifactLocation,
) -> Dict[str, Any]:
    vendor_user_id = link.vendor_user_id or ""
    principal = link.principal
    return {
        "python": {
            "files": {
                "handler.py": relay_handler_source(),
                "requirements.txt": "httpx\n",
            },
        },
        "metadata": {
            "tags": {
                "chatUser": principal.user,
                "chatChannel": principal.channel,
                "chatTeam": principal.team,
                "chatTenant": principal.tenant,
                "vendorUser": vendor_user_id,
                "ownerId": config.owner_id,
            },
        },
        "security": {
            "functionPermissions": {
                "allow": [
                    {
                        "action": "function:execute",
                        "resource": notification_resource(
                            config.account_id,
                            config.subscription_id,
                            config.boundary_id,
                            config.function_id,
                            vendor_user_id,
                        ),
                    }
                ]
            },
            "authentication": "required",
            "authorization": [
                {
                    "action": "function:execute",
                    "resource": function_resource(
                        config.account_id,
                        config.subscription_id,
                        location.boundary_id,
                        location.function_id,
                    ),
                }
            ],
        },
        "configurationSerialized": (
            "# Vendor's user ID\n"
            f"vendor_user_id={vendor_user_id}\n"
            "\n"
            "# Connector URL\n"
            f"connector_url={config.base_url}\n"
        ),
    }


__all__ = [
    "ARTIFACT_FUNCTION_ID",
    "ArtifactLocation",
    "locate_artifact",
    "relay_handler_source",
    "build_artifact_specification",
]
