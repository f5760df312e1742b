from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import RECEIVED_ON, row_count
from dyehouse.domain import LotLineId, TicketItem
from dyehouse.errors import LineInUseError, OverAllocation, ValidationError
from dyehouse.repository import RecordNotFoundError


def test_receive_numbers_lines_per_section_and_day(receive):
    first = receive()
    second = receive()
    next_day = receive(day=RECEIVED_ON + timedelta(days=1))
    other_section = receive(section=2)

    assert first.id == LotLineId(1, RECEIVED_ON, 1)
    assert second.id.line == 2
    assert next_day.id.line == 1
    assert other_section.id == LotLineId(2, RECEIVED_ON, 1)
    assert first.pending_rolls == 10
    assert first.pending_weight == 100.0
    assert first.registered_at is not None


def test_receive_keeps_finishing_flags(receive, service):
    line = receive(bleach=True, dye=True, requisition="REQ-7")
    stored = service.get_lot(line.id)
    assert stored.bleach is True
    assert stored.desize is False
    assert stored.dye is True
    assert stored.requisition == "REQ-7"


@pytest.mark.parametrize(
    "overrides",
    [
        {"weight": 0.0},
        {"weight": -5.0},
        {"weight": float("nan")},
        {"rolls": -1},
        {"client_name": "   "},
        {"client_id": 0},
        {"article_code": ""},
    ],
)
def test_receive_rejects_invalid_input(receive, database, overrides):
    with pytest.raises(ValidationError):
        receive(**overrides)
    assert row_count(database, "lot_lines") == 0


def test_list_pending_orders_most_recent_first(receive, service):
    older = receive()
    newer_a = receive(day=RECEIVED_ON + timedelta(days=2))
    newer_b = receive(day=RECEIVED_ON + timedelta(days=2))

    page = service.pending_lots()

    assert [line.id for line in page.items] == [newer_b.id, newer_a.id, older.id]
    assert page.total == 3
    assert page.total_pages == 1


def test_list_pending_hides_fully_allocated_lines(receive, service):
    full = receive(rolls=5, weight=50.0)
    partial = receive(rolls=5, weight=50.0)
    service.create_ticket(
        1,
        RECEIVED_ON,
        [
            TicketItem(full.id, 5, 50.0),
            TicketItem(partial.id, 2, 20.0),
        ],
    )

    page = service.pending_lots()

    assert [line.id for line in page.items] == [partial.id]
    assert page.items[0].pending_rolls == 3
    assert page.items[0].pending_weight == 30.0


def test_list_pending_keeps_line_with_weight_left(receive, service):
    line = receive(rolls=5, weight=50.0)
    service.create_ticket(1, RECEIVED_ON, [TicketItem(line.id, 5, 40.0)])

    page = service.pending_lots()

    assert [item.id for item in page.items] == [line.id]
    assert page.items[0].pending_rolls == 0
    assert page.items[0].pending_weight == 10.0


def test_list_pending_filters(receive, service):
    ave = receive(requisition="REQ-2201")
    receive(client_id=87, client_name="Tecidos Cávado, SA", requisition="REQ-9")

    by_name = service.pending_lots(name_filter="malhas")
    by_client = service.pending_lots(client_filter=87)
    by_requisition = service.pending_lots(requisition_filter="req-22")
    by_section = service.pending_lots(section=2)

    assert [line.id for line in by_name.items] == [ave.id]
    assert [line.client_id for line in by_client.items] == [87]
    assert [line.id for line in by_requisition.items] == [ave.id]
    assert by_section.total == 0
    assert by_section.items == []


def test_list_pending_paginates(receive, service):
    for _ in range(5):
        receive()

    page = service.pending_lots(page=2, limit=2)

    assert page.total == 5
    assert page.total_pages == 3
    assert page.page == 2
    assert [line.id.line for line in page.items] == [3, 2]


def test_allocate_rejects_more_than_pending(receive, service, database):
    line = receive(rolls=4, weight=40.0)

    with database.unit_of_work() as con:
        service.ledger.allocate(con, line.id, 3, 30.0)
    with pytest.raises(OverAllocation):
        with database.unit_of_work() as con:
            service.ledger.allocate(con, line.id, 2, 5.0)

    stored = service.get_lot(line.id)
    assert stored.delivered_rolls == 3
    assert stored.delivered_weight == 30.0


def test_delete_unused_line(receive, service):
    line = receive()

    service.delete_lot(line.id)

    with pytest.raises(RecordNotFoundError):
        service.get_lot(line.id)


def test_delete_refuses_allocated_line(receive, service):
    line = receive()
    service.create_ticket(1, RECEIVED_ON, [TicketItem(line.id, 1, 10.0)])

    with pytest.raises(LineInUseError):
        service.delete_lot(line.id)
    assert service.get_lot(line.id).delivered_rolls == 1


def test_delete_missing_line(service):
    with pytest.raises(RecordNotFoundError):
        service.delete_lot(LotLineId(1, RECEIVED_ON, 42))


def test_lookups_are_distinct(receive, service):
    receive(composition_id=1, composition_description="100% Algodão")
    receive(composition_id=1, composition_description="100% Algodão")
    receive(
        client_id=87,
        client_name="Tecidos Cávado, SA",
        article_code="POP-110",
        article_description="Popeline 110 g/m2",
        composition_id=3,
        composition_description="100% Poliéster",
    )

    clients = service.ledger.lookup_clients()
    articles = service.ledger.lookup_articles()
    compositions = service.ledger.lookup_compositions()

    assert [(client.id, client.name) for client in clients] == [
        (120, "Malhas do Ave, Lda"),
        (87, "Tecidos Cávado, SA"),
    ]
    assert articles == [("JER-160", "Jersey 160 g/m2"), ("POP-110", "Popeline 110 g/m2")]
    assert compositions == [(1, "100% Algodão"), (3, "100% Poliéster")]
