"""Canonical tag and label sets attached to every spawner resource.

Precedence, lowest first: default tags, computed node fields, caller labels.
The default keys are always present; a caller may override their values but
cannot remove them.
"""

from typing import Mapping, Optional

from .messages import NodeSpec

SCOPE_TAG = "scope"
CREATOR_TAG = "creator"
SPAWNER_SERVICE_LABEL = "spawner-service"

NODE_NAME_LABEL = "node-name"
INSTANCE_LABEL = "instance"
NODE_SELECTOR_LABEL = "node-selector"
TYPE_LABEL = "type"
NODE_GROUP_TYPE = "nodegroup"


def merge(*maps: Optional[Mapping[str, str]]) -> dict[str, str]:
    """Merge mappings left to right; later keys win."""
    merged: dict[str, str] = {}
    for m in maps:
        if m:
            merged.update(m)
    return merged


def scope_tag(env: str) -> str:
    return f"nb-{env}"


def default_tags(env: str) -> dict[str, str]:
    """Tags added to every resource the service creates."""
    return {
        SCOPE_TAG: scope_tag(env),
        CREATOR_TAG: SPAWNER_SERVICE_LABEL,
    }


def _label_safe(value: str) -> str:
    # "+" is rejected by the AWS tag value pattern
    return value.replace("+", "-")


def node_labels(
    node_spec: NodeSpec, env: str, instance: Optional[str] = None
) -> dict[str, str]:
    """Labels for a node group built from ``node_spec``.

    ``instance`` is the resolved instance type; when omitted the explicit
    instance (or else the machine-type class) from the node spec is used.
    """
    resolved = instance or node_spec.instance or node_spec.machine_type
    computed = {
        NODE_NAME_LABEL: node_spec.name,
        INSTANCE_LABEL: _label_safe(resolved),
        NODE_SELECTOR_LABEL: node_spec.name,
        TYPE_LABEL: NODE_GROUP_TYPE,
    }
    return merge(default_tags(env), computed, node_spec.labels)


def build_tags(labels: Optional[Mapping[str, str]], env: str) -> dict[str, str]:
    """Tags for a resource created with caller-supplied ``labels``."""
    return merge(default_tags(env), labels)
