"""Resource ID construction for ARM-style control planes."""

from __future__ import annotations

from cloud_provisioner.clients.base import ResourceAddress

RESOURCE_GROUP_KIND = "Microsoft.Resources/resourceGroups"


def is_resource_group(kind: str) -> bool:
    return kind.lower() == RESOURCE_GROUP_KIND.lower()


def _is_resource_group_id(resource_id: str) -> bool:
    parts = [p for p in resource_id.split("/") if p]
    # subscriptions/<sub>/resourceGroups/<name>
    return len(parts) == 4 and parts[2].lower() == "resourcegroups"


def resource_id(subscription_id: str, address: ResourceAddress) -> str:
    """Return the full resource ID for *address*.

    - resource groups: ``/subscriptions/{sub}/resourceGroups/{name}``
    - resources inside a group: ``{group_id}/providers/{kind}/{name}``
    - child resources: ``{parent_id}/{last type segment}/{name}``
    - subscription-scoped resources: ``/subscriptions/{sub}/providers/{kind}/{name}``
    """
    if address.resource_id:
        return address.resource_id

    subscription_scope = f"/subscriptions/{subscription_id}"
    if is_resource_group(address.kind):
        return f"{subscription_scope}/resourceGroups/{address.name}"

    parent = address.parent_id
    if parent is None:
        return f"{subscription_scope}/providers/{address.kind}/{address.name}"

    parent = parent.rstrip("/")
    if _is_resource_group_id(parent):
        return f"{parent}/providers/{address.kind}/{address.name}"

    child_type = address.kind.rsplit("/", 1)[-1]
    return f"{parent}/{child_type}/{address.name}"

