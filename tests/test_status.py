import pytest

from rental_stock.domain.errors import InvalidTransitionError, PreconditionFailedError
from rental_stock.domain.status import UnitStatus, check_transition


@pytest.mark.parametrize("current,target", [
    (UnitStatus.IN_STOCK, UnitStatus.MAINTENANCE),
    (UnitStatus.MAINTENANCE, UnitStatus.IN_STOCK),
    (UnitStatus.IN_STOCK, UnitStatus.RETIRED),
    (UnitStatus.MAINTENANCE, UnitStatus.RETIRED),
])
def test_operator_transitions_allowed(current, target):
    check_transition(current, target, by_operator=True)


@pytest.mark.parametrize("target", list(UnitStatus))
def test_retired_is_terminal(target):
    if target == UnitStatus.RETIRED:
        check_transition(UnitStatus.RETIRED, target)
        return
    with pytest.raises(InvalidTransitionError):
        check_transition(UnitStatus.RETIRED, target)


def test_rented_moves_only_through_allocation():
    with pytest.raises(InvalidTransitionError):
        check_transition(UnitStatus.IN_STOCK, UnitStatus.RENTED, by_operator=True)
    with pytest.raises(InvalidTransitionError):
        check_transition(UnitStatus.RENTED, UnitStatus.IN_STOCK, by_operator=True)
    check_transition(UnitStatus.IN_STOCK, UnitStatus.RENTED, by_operator=False)
    check_transition(UnitStatus.RENTED, UnitStatus.IN_STOCK, by_operator=False)


def test_rented_unit_cannot_go_to_maintenance_or_retired():
    for target in (UnitStatus.MAINTENANCE, UnitStatus.RETIRED):
        with pytest.raises(InvalidTransitionError):
            check_transition(UnitStatus.RENTED, target, by_operator=False)


def test_invalid_transition_is_a_precondition_failure():
    with pytest.raises(PreconditionFailedError) as exc:
        check_transition("RETIRED", "IN_STOCK")
    assert exc.value.status_code == 409
    assert exc.value.code == "invalid_transition"
