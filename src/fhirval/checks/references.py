"""Reference integrity across the entries of a typed bundle."""

import logging
from collections.abc import Iterator
from typing import Any

from fhirval.config import ReferencePolicy
from fhirval.document.models import Bundle
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.navigation.navigator import escape_pointer_token

logger = logging.getLogger(__name__)

# Path fragment -> resource types a reference there may point at
EXPECTED_TYPES: list[tuple[str, tuple[str, ...]]] = [
    (".subject", ("Patient", "Group", "Device", "Location")),
    (".performer", ("Practitioner", "PractitionerRole", "Organization")),
    (".practitioner", ("Practitioner", "PractitionerRole", "Organization")),
    (".encounter", ("Encounter",)),
    (".location", ("Location",)),
]


def iter_references(node: Any, path: str, pointer: str) -> Iterator[tuple[str, str, dict]]:
    """Yield (path, pointer, reference element) for every element carrying a literal reference."""
    if isinstance(node, dict):
        if isinstance(node.get("reference"), str) and node["reference"]:
            yield path, pointer, node
        for key, value in node.items():
            if key in ("reference", "resourceType") or key.startswith("_"):
                continue
            yield from iter_references(value, f"{path}.{key}", f"{pointer}/{escape_pointer_token(key)}")
    elif isinstance(node, list):
        for index, item in enumerate(node):
            yield from iter_references(item, f"{path}[{index}]", f"{pointer}/{index}")


def expected_types(reference: dict, path: str) -> list[str]:
    types = []
    if isinstance(reference.get("type"), str) and reference["type"]:
        types.append(reference["type"])
    lowered = path.lower()
    for fragment, candidates in EXPECTED_TYPES:
        if fragment in lowered:
            types.extend(candidates)
            break
    return types


class ReferenceChecker:
    """Checks that literal references resolve inside the bundle, to the right type."""

    def __init__(self, policy: ReferencePolicy | str = ReferencePolicy.IN_BUNDLE_ONLY):
        self.policy = ReferencePolicy(policy)

    def check(self, document: Bundle) -> list[Finding]:
        findings: list[Finding] = []
        for index, resource in document.resources():
            seen: set[str] = set()
            tree = resource.as_tree()
            for path, pointer, element in iter_references(
                tree, resource.resource_type, f"/entry/{index}/resource",
            ):
                reference = element["reference"]
                # Contained and fragment references are resolved within the resource itself
                if reference.startswith("#") or reference in seen:
                    continue
                seen.add(reference)
                finding = self._check_one(document, resource.resource_type, index, path, pointer, element)
                if finding is not None:
                    findings.append(finding)
        logger.debug(f"Reference check ({self.policy.value}) produced {len(findings)} findings")
        return findings

    def _check_one(
        self,
        document: Bundle,
        resource_type: str,
        entry_index: int,
        path: str,
        pointer: str,
        element: dict,
    ) -> Finding | None:
        reference = element["reference"]
        resolved = document.resolve(reference)
        if resolved is None:
            allow_external = self.policy == ReferencePolicy.ALLOW_EXTERNAL
            return Finding(
                source=FindingSource.REFERENCE,
                severity=Severity.WARNING if allow_external else Severity.ERROR,
                code="REFERENCE_NOT_FOUND",
                message=(
                    f"Reference not resolved: {reference}. External references are allowed by configuration."
                    if allow_external
                    else f"Referenced resource not found: {reference}"
                ),
                resource_type=resource_type,
                path=path,
                pointer=f"{pointer}/reference",
                entry_index=entry_index,
                details={"reference": reference, "policy": self.policy.value},
            )

        _, target = resolved
        expected = expected_types(element, path)
        if expected and target.resource_type not in expected:
            return Finding(
                source=FindingSource.REFERENCE,
                severity=Severity.ERROR,
                code="REFERENCE_TYPE_MISMATCH",
                message=(
                    f"Reference {reference} points to a {target.resource_type}, "
                    f"expected one of: {', '.join(expected)}"
                ),
                resource_type=resource_type,
                path=path,
                pointer=f"{pointer}/reference",
                entry_index=entry_index,
                details={"reference": reference, "expectedTypes": expected, "actualType": target.resource_type},
            )
        return None
