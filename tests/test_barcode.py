from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import RECEIVED_ON, row_count
from dyehouse.barcode import BarcodeOperationRouter, decode
from dyehouse.domain import MachineSelection, ProcessOperation, TicketItem
from dyehouse.errors import DecodeError, DispatchError
from dyehouse.repository import RecordNotFoundError


@pytest.mark.parametrize(
    "code, expected",
    [
        ("1.07", MachineSelection(machine_id=7)),
        ("1.6", MachineSelection(machine_id=6)),
        ("3.100.5", ProcessOperation(operation_class=3, ticket_number=100, process_step=5)),
        (" 2.25352.12\n", ProcessOperation(2, 25352, 12)),
    ],
)
def test_decode_valid(code, expected):
    assert decode(code) == expected


@pytest.mark.parametrize(
    "code",
    ["", "   ", "abc", "1", "2.5", "1.2.3", "2.1.2.3", "0.5", "1.0", "2.0.1", "2.-1.3",
     "2.1.x", "2..3", "1.", "+1.6", "1.٣"],
)
def test_decode_invalid(code):
    with pytest.raises(DecodeError):
        decode(code)


@pytest.fixture
def ticket(receive, service) -> int:
    line = receive(rolls=8, weight=80.0)
    number = service.create_ticket(1, RECEIVED_ON, [TicketItem(line.id, 8, 80.0)]).number
    service.add_process_step(1, number, 1)
    service.add_process_step(1, number, 2, color_id=1)
    return number


def readings(database):
    with database.connect() as con:
        rows = con.execute(
            "SELECT sequence, terminal, machine, operation, ticket, step, section "
            "FROM machine_readings ORDER BY sequence"
        ).fetchall()
    return [tuple(row) for row in rows]


def test_machine_selection_binds_terminal(service, database):
    result = service.scan("1.06", "TERM-A")

    assert result.sequence_number == 1
    assert result.message == "Gravação OK: 1 - Jet 6"
    assert result.operation_description == "Selecção de máquina"
    assert result.details == {"maquina": 6, "maquina_descricao": "Jet 6"}
    assert result.duplicate is False
    with database.connect() as con:
        binding = con.execute("SELECT machine, section FROM terminals WHERE terminal = 'TERM-A'").fetchone()
    assert tuple(binding) == (6, 1)


def test_process_operation_uses_bound_machine(service, database, ticket):
    service.scan("1.06", "TERM-A")
    service.scan("1.07", "TERM-B")

    entry = service.scan(f"2.{ticket}.2", "TERM-A")

    assert entry.sequence_number == 3
    assert entry.details == {
        "fa_numero": ticket,
        "processo": 2,
        "maquina": 6,
        "processo_descricao": "Tingimento",
    }
    assert entry.message == "Gravação OK: 3 - Entrada Tingimento"
    assert readings(database)[-1] == (3, "TERM-A", 6, 2, ticket, 2, 1)


def test_neutral_operation_keeps_ticket_reference(service, ticket):
    service.scan("1.07", "TERM-A")

    result = service.scan(f"4.{ticket}.1", "TERM-A")

    assert "processo_descricao" not in result.details
    assert result.message == f"Gravação OK: 2 - Paragem FA {ticket} / 1"


def test_unknown_operation_class_still_recorded(service, database, ticket):
    result = service.scan(f"9.{ticket}.1", "TERM-A")

    assert result.operation_description == "Operação 9"
    assert row_count(database, "machine_readings") == 1


def test_unbound_terminal_records_machine_zero(service, database, ticket):
    service.scan(f"3.{ticket}.1", "NOVO")

    assert readings(database) == [(1, "NOVO", 0, 3, ticket, 1, 1)]


def test_default_terminal(service, database):
    service.scan("1.7")

    assert readings(database)[0][1] == "WEB-LEITOR"


def test_unknown_machine_writes_nothing(service, database):
    with pytest.raises(RecordNotFoundError):
        service.scan("1.55", "TERM-A")
    assert row_count(database, "machine_readings") == 0
    assert row_count(database, "terminals") == 0


def test_unknown_ticket_writes_nothing(service, database):
    with pytest.raises(RecordNotFoundError):
        service.scan("2.4242.1", "TERM-A")
    assert row_count(database, "machine_readings") == 0


def test_sequence_numbers_increase_without_dedupe(service, database):
    first = service.scan("1.06", "TERM-A")
    second = service.scan("1.06", "TERM-A")

    assert second.sequence_number > first.sequence_number
    assert second.duplicate is False
    assert row_count(database, "machine_readings") == 2


def test_dedupe_window_returns_earlier_reading(service, database, settings):
    router = BarcodeOperationRouter(database, replace(settings, scan_dedupe_seconds=60))

    first = router.scan("1.06", "TERM-A")
    repeated = router.scan("1.06", "TERM-A")
    other_terminal = router.scan("1.06", "TERM-B")

    assert repeated.sequence_number == first.sequence_number
    assert repeated.duplicate is True
    assert repeated.message.startswith("Leitura repetida: 1")
    assert other_terminal.sequence_number == 2
    assert row_count(database, "machine_readings") == 2


def test_storage_failure_becomes_dispatch_error(service, database):
    with database.connect() as con:
        con.execute("DROP TABLE machine_readings")

    with pytest.raises(DispatchError) as caught:
        service.scan("1.06", "TERM-A")

    assert "machine_readings" in caught.value.reason
    assert row_count(database, "terminals") == 0
