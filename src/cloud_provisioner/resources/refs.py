"""Output references between steps.

A payload value of the form ``{"$ref": "vault.properties.vaultUri"}`` is
replaced, just before submission, by the value found at that path in the
``vault`` step's resulting resource. The first path segment is always a
step ID.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from cloud_provisioner.errors import UnresolvedReference

REF_KEY = "$ref"


def _is_ref(value: Any) -> bool:
    return isinstance(value, dict) and len(value) == 1 and REF_KEY in value


def iter_refs(data: Any) -> Iterator[str]:
    """Yield every reference string found in *data*, depth first."""
    if _is_ref(data):
        yield str(data[REF_KEY])
    elif isinstance(data, dict):
        for value in data.values():
            yield from iter_refs(value)
    elif isinstance(data, list):
        for item in data:
            yield from iter_refs(item)


def referenced_steps(data: Any) -> list[str]:
    """Step IDs referenced from *data*, in first-seen order."""
    seen: dict[str, None] = {}
    for ref in iter_refs(data):
        seen.setdefault(ref.split(".", 1)[0], None)
    return list(seen)


def _lookup(source: Any, path: list[str], ref: str) -> Any:
    current = source
    for segment in path:
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise UnresolvedReference(ref, f"no '{segment}'")
    return current


def resolve_refs(data: Any, outputs: Mapping[str, Mapping[str, Any]]) -> Any:
    """Return a copy of *data* with every reference substituted from *outputs*.

    *outputs* maps step IDs to the resource produced by that step.
    """
    if _is_ref(data):
        ref = str(data[REF_KEY])
        step_id, _, rest = ref.partition(".")
        if step_id not in outputs:
            raise UnresolvedReference(ref, f"step '{step_id}' has no output")
        path = rest.split(".") if rest else []
        return _lookup(outputs[step_id], path, ref)
    if isinstance(data, dict):
        return {k: resolve_refs(v, outputs) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_refs(item, outputs) for item in data]
    return data
