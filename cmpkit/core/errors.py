from __future__ import annotations

from typing import Any, Dict


class CompositionError(ValueError):
    """Base class of every error raised by the modelling and instantiation core.

    `code` is stable and is what the HTTP layer returns to clients, `data`
    carries the structured context (names only, never model objects).
    """

    code = "composition_error"
    status_code = 400

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.data: Dict[str, Any] = data

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": str(self), "data": dict(self.data)}


# ------------------------------------------------------------
# Declaration-time
# ------------------------------------------------------------
class DeclarationError(CompositionError):
    code = "declaration_error"
    status_code = 422


class AmbiguousSlotSelector(DeclarationError):
    code = "ambiguous_slot_selector"


class NotASpecialization(DeclarationError):
    code = "not_a_specialization"


class NonSymmetricConstraint(DeclarationError):
    code = "non_symmetric_constraint"
    status_code = 500


class PortCollision(DeclarationError):
    code = "port_collision"


class PortMismatch(DeclarationError):
    code = "port_mismatch"


class PortMappingConflict(DeclarationError):
    code = "port_mapping_conflict"

    def __init__(self, key: str, left: str, right: str):
        super().__init__(
            f"port mapping conflict on {key}: {left} != {right}",
            key=key,
            left=left,
            right=right,
        )
        self.key = key
        self.left = left
        self.right = right


class PortAlreadyExists(DeclarationError):
    code = "port_already_exists"
    status_code = 409


class InvalidOverload(DeclarationError):
    code = "invalid_overload"


class InvalidChildPort(DeclarationError):
    code = "invalid_child_port"


class ModelCycle(DeclarationError):
    code = "model_cycle"


class DuplicateModel(DeclarationError):
    code = "duplicate_model"
    status_code = 409


# ------------------------------------------------------------
# Instantiation-time
# ------------------------------------------------------------
class InstantiationError(CompositionError):
    code = "instantiation_error"
    status_code = 409


class AmbiguousSpecialization(InstantiationError):
    code = "ambiguous_specialization"


class ServiceNotProvided(InstantiationError):
    code = "service_not_provided"
    status_code = 404


class AmbiguousServiceSelection(InstantiationError):
    code = "ambiguous_service_selection"


class MissingRequiredModel(InstantiationError):
    code = "missing_required_model"


class InvalidSelection(InstantiationError):
    code = "invalid_selection"
    status_code = 422


class UnresolvableCircularReference(InstantiationError):
    code = "unresolvable_circular_reference"


class SpecializationRecursion(InstantiationError):
    code = "specialization_recursion"
    status_code = 500


# ------------------------------------------------------------
# Catalog
# ------------------------------------------------------------
class CatalogError(CompositionError):
    code = "catalog_error"
    status_code = 422


class UnknownModel(CatalogError):
    code = "unknown_model"
    status_code = 404
