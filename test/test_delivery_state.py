import pytest

from delivery_engine.delivery_state import (
    DISPUTABLE_STATUSES,
    DeliveryStatus,
    driver_tab_for_status,
    is_terminal,
    is_valid_transition,
    parse_status,
    requires_driver,
    seller_tab_for_status,
    sources_for,
)
from delivery_engine.errors import ValidationError

S = DeliveryStatus


@pytest.mark.parametrize("src,dst", [
    (S.OPEN, S.ASSIGNED),
    (S.OPEN, S.CANCELLED),
    (S.ASSIGNED, S.ON_ROUTE),
    (S.ON_ROUTE, S.DELIVERED),
    (S.DELIVERED, S.PAID),
    (S.PAID, S.CLOSED),
    (S.DELIVERED, S.CLOSED),
    (S.ASSIGNED, S.DISPUTE),
    (S.PAID, S.DISPUTE),
])
def test_allowed_transitions(src, dst):
    assert is_valid_transition(src, dst)


@pytest.mark.parametrize("src,dst", [
    (S.OPEN, S.ON_ROUTE),
    (S.ASSIGNED, S.CANCELLED),
    (S.ASSIGNED, S.DELIVERED),
    (S.CLOSED, S.OPEN),
    (S.CANCELLED, S.OPEN),
    (S.DISPUTE, S.CLOSED),
    (S.DELIVERED, S.RETURNED),
    (S.RETURNED, S.OPEN),
])
def test_rejected_transitions(src, dst):
    assert not is_valid_transition(src, dst)


def test_terminal_states_have_no_exits():
    for status in (S.CLOSED, S.CANCELLED, S.DISPUTE):
        assert is_terminal(status)
        assert not any(is_valid_transition(status, t) for t in S)


def test_open_cannot_be_disputed():
    # an open listing has no counterparty to dispute with
    assert S.OPEN not in DISPUTABLE_STATUSES
    assert DISPUTABLE_STATUSES == {S.ASSIGNED, S.ON_ROUTE, S.DELIVERED, S.PAID}


def test_returned_is_never_a_target():
    assert sources_for(S.RETURNED) == frozenset()


def test_parse_status_reads_legacy_values():
    assert parse_status("picked_up") is S.ON_ROUTE
    assert parse_status("RETURNED") is S.RETURNED
    assert parse_status(" open ") is S.OPEN


def test_parse_status_rejects_unknown():
    with pytest.raises(ValidationError):
        parse_status("LOST")


def test_requires_driver():
    assert not requires_driver(S.OPEN)
    assert not requires_driver(S.CANCELLED)
    assert requires_driver(S.ASSIGNED)
    assert requires_driver(S.DISPUTE)


def test_tabs_cover_every_status():
    for status in S:
        assert seller_tab_for_status(status)
        assert driver_tab_for_status(status) != "REQUESTS"
    assert seller_tab_for_status(S.CANCELLED) == "CLOSED"
    assert seller_tab_for_status(S.RETURNED) == "CLOSED"
