"""Statically declared value sets.

Codes are listed in their canonical order; the first entries are the ones
shown when a finding lists allowed values.
"""

VALUE_SETS: dict[str, tuple[str, ...]] = {
    "ObservationStatus": (
        "registered", "preliminary", "final", "amended", "corrected",
        "cancelled", "entered-in-error", "unknown",
    ),
    "AdministrativeGender": ("male", "female", "other", "unknown"),
    "EncounterStatus": (
        "planned", "arrived", "triaged", "in-progress", "onleave",
        "finished", "cancelled", "entered-in-error", "unknown",
    ),
    "BundleType": (
        "document", "message", "transaction", "transaction-response", "batch",
        "batch-response", "history", "searchset", "collection",
    ),
    "NameUse": ("usual", "official", "temp", "nickname", "anonymous", "old", "maiden"),
    "IdentifierUse": ("usual", "official", "temp", "secondary", "old"),
    "ContactPointSystem": ("phone", "fax", "email", "pager", "url", "sms", "other"),
    "ContactPointUse": ("home", "work", "temp", "old", "mobile"),
    "AddressUse": ("home", "work", "temp", "old", "billing"),
    "LinkType": ("replaced-by", "replaces", "refer", "seealso"),
    "HTTPVerb": ("GET", "HEAD", "POST", "PUT", "DELETE", "PATCH"),
}

# Enumeration names as they appear in parser messages -> value set id
ENUM_ALIASES: dict[str, str] = {
    "Encounter.StatusCode": "EncounterStatus",
    "EncounterStatus": "EncounterStatus",
    "ObservationStatus": "ObservationStatus",
    "AdministrativeGender": "AdministrativeGender",
    "Bundle.BundleType": "BundleType",
    "BundleType": "BundleType",
    "NameUse": "NameUse",
    "HumanName.NameUse": "NameUse",
    "IdentifierUse": "IdentifierUse",
    "ContactPointSystem": "ContactPointSystem",
    "ContactPointUse": "ContactPointUse",
    "AddressUse": "AddressUse",
    "LinkType": "LinkType",
    "HTTPVerb": "HTTPVerb",
}


def permitted_codes(value_set_id: str) -> tuple[str, ...]:
    """Return the ordered codes of a value set, or an empty tuple if unknown."""
    return VALUE_SETS.get(ENUM_ALIASES.get(value_set_id, value_set_id), ())


def is_known(value_set_id: str) -> bool:
    return ENUM_ALIASES.get(value_set_id, value_set_id) in VALUE_SETS
