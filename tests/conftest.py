from __future__ import annotations

from datetime import date

import pytest

from dyehouse.domain import LotLine
from dyehouse.services import FactoryService
from dyehouse.settings import Settings
from dyehouse.storage import FactoryDatabase

RECEIVED_ON = date(2025, 3, 14)


def seed_reference_data(service: FactoryService) -> None:
    service.register_operation(1, "Selecção de máquina", machine_selection=True)
    service.register_operation(2, "Entrada", entry=True)
    service.register_operation(3, "Saída", exit=True)
    service.register_operation(4, "Paragem")

    service.register_machine(6, "Jet 6", display_order=2)
    service.register_machine(7, "Râmola", display_order=1)
    service.register_machine(8, "Jigger parado", display_order=3, active=False)
    service.register_machine(9, "Secador", section=2, display_order=1)

    service.register_process(1, "Branqueamento", display_order=1)
    service.register_process(2, "Tingimento", display_order=2, uses_color=True)
    service.register_color(1, "AZ-210", fabric="Algodão")

    service.register_delivery_state(1, "Conforme")
    service.register_delivery_state(2, "Com defeito")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(db_path=tmp_path / "factory.db")


@pytest.fixture
def database(settings) -> FactoryDatabase:
    db = FactoryDatabase(settings.db_path, busy_timeout=settings.busy_timeout_seconds)
    db.ensure_schema()
    return db


@pytest.fixture
def service(database, settings) -> FactoryService:
    factory = FactoryService(database, settings)
    seed_reference_data(factory)
    return factory


@pytest.fixture
def receive(service):
    """Register a reception line with sensible defaults."""

    def _receive(
        rolls: int = 10,
        weight: float = 100.0,
        *,
        section: int = 1,
        day: date = RECEIVED_ON,
        client_id: int = 120,
        client_name: str = "Malhas do Ave, Lda",
        **extra,
    ) -> LotLine:
        extra.setdefault("article_code", "JER-160")
        extra.setdefault("article_description", "Jersey 160 g/m2")
        return service.receive_lot(
            section,
            day,
            client_id=client_id,
            client_name=client_name,
            requested_rolls=rolls,
            requested_weight=weight,
            **extra,
        )

    return _receive


def row_count(database: FactoryDatabase, table: str) -> int:
    with database.connect() as con:
        return con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
