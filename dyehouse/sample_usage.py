"""Demonstration script for the dyehouse finishing workflow."""

from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path
from pprint import pprint

from . import FactoryDatabase, FactoryService, Settings, TicketItem
from .errors import OverDelivery
from .logging_conf import configure_logging


def main() -> None:
    with tempfile.TemporaryDirectory() as workdir:
        settings = Settings(db_path=Path(workdir) / "demo.db")
        configure_logging(settings)
        database = FactoryDatabase(settings.db_path)
        database.ensure_schema()
        factory = FactoryService(database, settings)

        # Tabelas
        factory.register_operation(1, "Selecção de máquina", machine_selection=True)
        factory.register_operation(2, "Entrada", entry=True)
        factory.register_operation(3, "Saída", exit=True)
        factory.register_machine(6, "Jet 6", display_order=1)
        factory.register_machine(7, "Râmola", display_order=2)
        factory.register_process(1, "Branqueamento", display_order=1)
        factory.register_process(2, "Tingimento", display_order=2, uses_color=True)
        factory.register_color(1, "AZ-210", fabric="Algodão")
        factory.register_delivery_state(1, "Conforme")

        # Recepção
        jersey = factory.receive_lot(
            None,
            date.today(),
            client_id=120,
            client_name="Malhas do Ave, Lda",
            article_code="JER-160",
            article_description="Jersey 160 g/m2",
            requested_rolls=20,
            requested_weight=200.0,
            requisition="REQ-2201",
            dye=True,
        )
        rib = factory.receive_lot(
            None,
            date.today(),
            client_id=120,
            client_name="Malhas do Ave, Lda",
            article_code="RIB-220",
            article_description="Rib 220 g/m2",
            requested_rolls=5,
            requested_weight=50.0,
        )

        # Ficha de acabamento com parte do jersey e todo o rib
        created = factory.create_ticket(
            None,
            date.today(),
            [
                TicketItem(line_id=jersey.id, rolls=10, weight=100.0),
                TicketItem(line_id=rib.id, rolls=5, weight=50.0),
            ],
        )
        print("FA criada:")
        pprint(created)
        print("Pendentes após a FA:")
        pprint([(str(line.id), line.pending_rolls, line.pending_weight)
                for line in factory.pending_lots().items])

        # Processos
        factory.add_process_step(None, created.number, 1, rolls=15, weight=150.0)
        factory.add_process_step(None, created.number, 2, color_id=1, rolls=15, weight=150.0)
        for step in factory.process_steps(None, created.number):
            print(f"  {step.line}: {step.process_description} {step.color_code}")

        # Leituras nos terminais
        print(factory.scan("1.06", "TERM-A").message)
        print(factory.scan(f"2.{created.number}.2", "TERM-A").message)
        pprint(factory.machine_status())

        # Entregas parciais
        pprint(factory.register_delivery(None, created.number, 10, 100.0, 1))
        try:
            factory.register_delivery(None, created.number, 10, 100.0, 1)
        except OverDelivery as exc:
            print(f"Rejeitada: {exc}")
        pprint(factory.register_delivery(None, created.number, 5, 50.0, 1))
        pprint(factory.ticket_detail(None, created.number))


if __name__ == "__main__":
    main()
