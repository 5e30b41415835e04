from enum import Enum

from rental_stock.domain.errors import InvalidTransitionError


class UnitStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    RENTED = "RENTED"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"


# RETIRED is terminal
ALLOWED_TRANSITIONS = {
    UnitStatus.IN_STOCK: {UnitStatus.RENTED, UnitStatus.MAINTENANCE, UnitStatus.RETIRED},
    UnitStatus.RENTED: {UnitStatus.IN_STOCK},
    UnitStatus.MAINTENANCE: {UnitStatus.IN_STOCK, UnitStatus.RETIRED},
    UnitStatus.RETIRED: set(),
}

# Transitions reserved to the allocation engine
ALLOCATION_ONLY = {
    (UnitStatus.IN_STOCK, UnitStatus.RENTED),
    (UnitStatus.RENTED, UnitStatus.IN_STOCK),
}


def check_transition(current: UnitStatus, target: UnitStatus, by_operator: bool = True) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed.

    A transition to the same status is always accepted. Operator edits may
    not move a unit into or out of RENTED; that goes through allocate and
    release.
    """
    current, target = UnitStatus(current), UnitStatus(target)
    if current == target:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Unit cannot move from {current.value} to {target.value}"
        )
    if by_operator and (current, target) in ALLOCATION_ONLY:
        raise InvalidTransitionError(
            f"Unit cannot move from {current.value} to {target.value} by a manual edit; "
            "use allocation or release"
        )
