"""Resource paths of the function-hosting platform used in grants."""

from urllib.parse import quote


def subscription_resource(account_id: str, subscription_id: str) -> str:
    return f"/account/{account_id}/subscription/{subscription_id}/"


def function_resource(account_id: str, subscription_id: str, boundary_id: str, function_id: str) -> str:
    return (
        f"/account/{account_id}/subscription/{subscription_id}"
        f"/boundary/{boundary_id}/function/{function_id}/"
    )


def storage_resource(account_id: str, subscription_id: str, boundary_id: str, function_id: str) -> str:
    return (
        f"/account/{account_id}/subscription/{subscription_id}"
        f"/storage/boundary/{boundary_id}/function/{function_id}/"
    )


def notification_resource(
    account_id: str,
    subscription_id: str,
    boundary_id: str,
    function_id: str,
    vendor_user_id: str,
) -> str:
    """Resource a per-principal artifact must hold ``function:execute`` on to notify its principal."""
    base = function_resource(account_id, subscription_id, boundary_id, function_id)
    return f"{base}operation/notification/{quote(vendor_user_id, safe='')}/"


__all__ = [
    "subscription_resource",
    "function_resource",
    "storage_resource",
    "notification_resource",
]
