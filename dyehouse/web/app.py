"""FastAPI-based web interface for the finishing floor."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from ..domain import LotLine, LotLineId, TicketDetail, TicketItem
from ..errors import DispatchError, ValidationError
from ..repository import DuplicateRecordError, RecordNotFoundError, RowDecodeError
from ..services import FactoryService
from ..settings import Settings, load_settings
from ..storage import FactoryDatabase
from .schemas import DeliveryIn, ProcessStepIn, ReceptionIn, ScanIn, TicketIn

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[FactoryDatabase] = None,
) -> FastAPI:
    settings = settings or load_settings()
    database = database or FactoryDatabase(
        settings.db_path, busy_timeout=settings.busy_timeout_seconds
    )
    database.ensure_schema()
    service = FactoryService(database, settings)
    if settings.seed_demo_data:
        ensure_demo_data(service)

    app = FastAPI(title="Tinturaria - Acabamentos")
    app.state.service = service
    app.state.settings = settings
    register_error_handlers(app)

    # ------------------------------------------------------------------
    # Reception
    # ------------------------------------------------------------------
    @app.get("/recepcao")
    def list_receptions(
        request: Request,
        seccao: Optional[int] = None,
        cliente: Optional[int] = None,
        requisicao: Optional[str] = None,
        nome: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ):
        service: FactoryService = request.app.state.service
        result = service.pending_lots(
            section=seccao,
            client_filter=cliente,
            requisition_filter=requisicao,
            name_filter=nome,
            page=page,
            limit=limit,
        )
        return {
            "success": True,
            "data": [lot_json(line) for line in result.items],
            "pagination": {
                "page": result.page,
                "total": result.total,
                "totalPages": result.total_pages,
            },
        }

    @app.post("/recepcao", status_code=201)
    def create_reception(request: Request, body: ReceptionIn):
        service: FactoryService = request.app.state.service
        line = service.receive_lot(
            body.seccao,
            body.data,
            client_id=body.cliente,
            client_name=body.nome,
            article_code=body.codigo,
            article_description=body.descricao,
            requested_rolls=body.rolos,
            requested_weight=body.pesos,
            composition_id=body.composicao,
            composition_description=body.composicao_descricao,
            requisition=body.requisicao,
            bleach=body.branquear,
            desize=body.desencolar,
            dye=body.tingir,
            registered_by=body.utilizador,
        )
        return {"success": True, "data": lot_json(line)}

    @app.get("/recepcao/lookup/clientes")
    def lookup_clients(request: Request):
        service: FactoryService = request.app.state.service
        clients = service.ledger.lookup_clients()
        return {
            "success": True,
            "data": [{"codigo": client.id, "nome": client.name} for client in clients],
        }

    @app.get("/recepcao/lookup/artigos")
    def lookup_articles(request: Request):
        service: FactoryService = request.app.state.service
        return {
            "success": True,
            "data": [
                {"codigo": code, "descricao": description}
                for code, description in service.ledger.lookup_articles()
            ],
        }

    @app.get("/recepcao/lookup/composicoes")
    def lookup_compositions(request: Request):
        service: FactoryService = request.app.state.service
        return {
            "success": True,
            "data": [
                {"codigo": code, "descricao": description}
                for code, description in service.ledger.lookup_compositions()
            ],
        }

    @app.get("/recepcao/{seccao}/{data}/{linha}")
    def get_reception(request: Request, seccao: int, data: date, linha: int):
        service: FactoryService = request.app.state.service
        line = service.get_lot(LotLineId(seccao, data, linha))
        return {"success": True, "data": lot_json(line)}

    @app.delete("/recepcao/{seccao}/{data}/{linha}")
    def delete_reception(request: Request, seccao: int, data: date, linha: int):
        service: FactoryService = request.app.state.service
        service.delete_lot(LotLineId(seccao, data, linha))
        return {"success": True, "message": "Recepção eliminada"}

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    @app.post("/fa", status_code=201)
    def create_ticket(request: Request, body: TicketIn):
        service: FactoryService = request.app.state.service
        items = [
            TicketItem(
                line_id=LotLineId(item.seccao, item.data, item.linha),
                rolls=item.rolos,
                weight=item.pesos,
            )
            for item in body.itens
        ]
        created = service.create_ticket(
            body.seccao, body.data or date.today(), items, note=body.obs
        )
        return {
            "success": True,
            "data": {"faNumero": created.number, "linhas": created.allocations},
        }

    # ------------------------------------------------------------------
    # Process steps
    # ------------------------------------------------------------------
    @app.get("/processos/ultima-fa")
    def last_ticket(request: Request, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        ticket = service.last_ticket(seccao)
        if ticket is None:
            return {"success": True, "data": None}
        return {
            "success": True,
            "data": {"faNumero": ticket.number, "data": ticket.created_on},
        }

    @app.get("/processos/ficha-entrada/{fa}")
    def ticket_header(request: Request, fa: int, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        return {"success": True, "data": ticket_json(service.ticket_detail(seccao, fa))}

    @app.get("/processos/ficha-processos/{fa}")
    def ticket_steps(request: Request, fa: int, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        steps = service.process_steps(seccao, fa)
        return {"success": True, "data": [asdict(step) for step in steps]}

    @app.get("/processos/search/processos")
    def search_processes(request: Request):
        service: FactoryService = request.app.state.service
        processes = service.processes.process_definitions()
        return {"success": True, "data": [asdict(item) for item in processes]}

    @app.get("/processos/search/cores")
    def search_colors(request: Request):
        service: FactoryService = request.app.state.service
        return {"success": True, "data": [asdict(item) for item in service.processes.colors()]}

    @app.post("/processos/add/{fa}", status_code=201)
    def add_process(
        request: Request, fa: int, body: ProcessStepIn, seccao: Optional[int] = None
    ):
        service: FactoryService = request.app.state.service
        step = service.add_process_step(
            seccao,
            fa,
            body.processo_id,
            color_id=body.cor_id,
            rolls=body.rolos,
            weight=body.pesos,
            note=body.observacoes,
        )
        return {"success": True, "message": "Processo adicionado", "data": asdict(step)}

    @app.delete("/processos/remove/{fa}/{linha}")
    def remove_process(
        request: Request, fa: int, linha: int, seccao: Optional[int] = None
    ):
        service: FactoryService = request.app.state.service
        service.remove_process_step(seccao, fa, linha)
        return {"success": True, "message": "Processo removido"}

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------
    @app.post("/entregas/registar/{fa}", status_code=201)
    def register_delivery(
        request: Request, fa: int, body: DeliveryIn, seccao: Optional[int] = None
    ):
        service: FactoryService = request.app.state.service
        result = service.register_delivery(
            seccao, fa, body.rolos, body.pesos, body.estado_id, note=body.observacoes
        )
        return {
            "success": True,
            "message": "Entrega registada com sucesso",
            "data": asdict(result),
        }

    @app.get("/entregas/{fa}")
    def list_deliveries(request: Request, fa: int, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        events = service.deliveries_for(seccao, fa)
        return {"success": True, "data": [asdict(event) for event in events]}

    @app.get("/tabelas/estados")
    def delivery_states(request: Request):
        service: FactoryService = request.app.state.service
        states = service.deliveries.delivery_states()
        return {"success": True, "data": [asdict(state) for state in states]}

    # ------------------------------------------------------------------
    # Shop-floor scans
    # ------------------------------------------------------------------
    @app.post("/operacoes/registar-leitura")
    def register_scan(request: Request, body: ScanIn):
        service: FactoryService = request.app.state.service
        result = service.scan(body.codigo_completo, body.terminal)
        return {
            "success": True,
            "message": result.message,
            "operacao": result.operation_description,
            "detalhes": result.details,
            "data": {
                "sequenceNumber": result.sequence_number,
                "duplicate": result.duplicate,
            },
        }

    @app.get("/operacoes/maquinas-status")
    def machine_status(request: Request, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        statuses = service.machine_status(seccao)
        return {"success": True, "data": [asdict(status) for status in statuses]}

    @app.get("/operacoes/painel")
    def machine_panel(request: Request, seccao: Optional[int] = None):
        service: FactoryService = request.app.state.service
        settings: Settings = request.app.state.settings
        statuses = service.machine_status(seccao)
        return templates.TemplateResponse(
            request,
            "machine_status.html",
            {
                "statuses": statuses,
                "section": settings.default_section if seccao is None else seccao,
                "refresh_seconds": settings.status_poll_seconds,
                "generated_at": datetime.now(),
            },
        )

    @app.get("/operacoes/test-connection")
    def test_connection(request: Request):
        service: FactoryService = request.app.state.service
        service.database.ping()
        return {
            "success": True,
            "message": "Conexão com base de dados OK",
            "timestamp": datetime.now().isoformat(timespec="seconds"),
        }

    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def rejected(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": str(exc), "kind": exc.kind},
        )

    @app.exception_handler(RecordNotFoundError)
    async def not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})

    @app.exception_handler(DuplicateRecordError)
    async def duplicate(request: Request, exc: DuplicateRecordError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"success": False, "error": str(exc)})

    @app.exception_handler(DispatchError)
    async def dispatch_failed(request: Request, exc: DispatchError) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "details": exc.reason},
        )

    @app.exception_handler(RowDecodeError)
    async def corrupt_row(request: Request, exc: RowDecodeError) -> JSONResponse:
        logger.error("Unreadable row on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Dados inválidos na base de dados", "details": str(exc)},
        )

    @app.exception_handler(sqlite3.Error)
    async def database_failed(request: Request, exc: sqlite3.Error) -> JSONResponse:
        logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Erro de base de dados", "details": str(exc)},
        )


def lot_json(line: LotLine) -> Dict[str, Any]:
    data = asdict(line)
    data["pending_rolls"] = line.pending_rolls
    data["pending_weight"] = line.pending_weight
    return data


def ticket_json(detail: TicketDetail) -> Dict[str, Any]:
    data = asdict(detail)
    data["pending_rolls"] = detail.pending_rolls
    data["pending_weight"] = detail.pending_weight
    return data


def ensure_demo_data(service: FactoryService) -> None:
    if len(service.database.machines) > 0:
        return

    service.register_operation(1, "Selecção de máquina", machine_selection=True)
    service.register_operation(2, "Entrada", entry=True)
    service.register_operation(3, "Saída", exit=True)
    service.register_operation(4, "Paragem")
    service.register_operation(5, "Entrega", delivery=True)
    service.register_operation(6, "Desperdício", waste=True)

    for machine_id, description in enumerate(
        ["Jet 1", "Jet 2", "Jigger", "Râmola", "Hidroextractor", "Secador"], start=1
    ):
        service.register_machine(machine_id, description, display_order=machine_id)

    service.register_process(1, "Branqueamento", display_order=1)
    service.register_process(2, "Desencolagem", display_order=2)
    service.register_process(3, "Tingimento", display_order=3, uses_color=True)
    service.register_process(4, "Secagem", display_order=4)
    service.register_process(5, "Râmola", display_order=5)

    service.register_color(1, "AZ-210", fabric="Algodão")
    service.register_color(2, "VM-105", fabric="Algodão")
    service.register_color(3, "PR-001", fabric="Poliéster")

    service.register_delivery_state(1, "Conforme")
    service.register_delivery_state(2, "Com defeito")
    service.register_delivery_state(3, "Reprocessar")

    yesterday = date.today() - timedelta(days=1)
    first = service.receive_lot(
        None,
        yesterday,
        client_id=120,
        client_name="Malhas do Ave, Lda",
        article_code="JER-160",
        article_description="Jersey 160 g/m2",
        composition_id=1,
        composition_description="100% Algodão",
        requested_rolls=24,
        requested_weight=480.0,
        requisition="REQ-2201",
        bleach=True,
        dye=True,
    )
    second = service.receive_lot(
        None,
        yesterday,
        client_id=120,
        client_name="Malhas do Ave, Lda",
        article_code="RIB-220",
        article_description="Rib 220 g/m2",
        composition_id=2,
        composition_description="95% Algodão 5% Elastano",
        requested_rolls=10,
        requested_weight=210.5,
        requisition="REQ-2201",
        dye=True,
    )
    service.receive_lot(
        None,
        date.today(),
        client_id=87,
        client_name="Tecidos Cávado, SA",
        article_code="POP-110",
        article_description="Popeline 110 g/m2",
        composition_id=3,
        composition_description="100% Poliéster",
        requested_rolls=40,
        requested_weight=900.0,
        desize=True,
    )

    created = service.create_ticket(
        None,
        date.today(),
        [
            TicketItem(line_id=first.id, rolls=12, weight=240.0),
            TicketItem(line_id=second.id, rolls=10, weight=210.5),
        ],
        note="Urgente",
    )
    service.add_process_step(None, created.number, 1, rolls=22, weight=450.5)
    service.add_process_step(None, created.number, 3, color_id=1, rolls=22, weight=450.5)
    service.scan("1.1", "TERM-JET1")
    service.scan(f"2.{created.number}.1", "TERM-JET1")


__all__ = ["create_app", "ensure_demo_data", "register_error_handlers"]
