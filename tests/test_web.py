from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from dyehouse.services import FactoryService
from dyehouse.settings import Settings
from dyehouse.storage import FactoryDatabase
from dyehouse.web.app import create_app, ensure_demo_data

RECEPTION = {
    "seccao": 1,
    "data": "2025-03-14",
    "cliente": 120,
    "nome": "Malhas do Ave, Lda",
    "codigo": 160,
    "descricao": "Jersey 160 g/m2",
    "rolos": 20,
    "pesos": 200.0,
    "branquear": "S",
    "tingir": "N",
    "requisicao": "REQ-2201",
}


@pytest.fixture
def client(service, settings, database):
    app = create_app(settings, database)
    with TestClient(app) as test_client:
        yield test_client


def receive(client, **overrides):
    response = client.post("/recepcao", json={**RECEPTION, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def create_ticket(client, *items):
    body = {
        "seccao": 1,
        "data": "2025-03-15",
        "itens": [
            {
                "movRecSeccao": line["id"]["section"],
                "movRecData": line["id"]["day"],
                "movRecLinha": line["id"]["line"],
                "rolos": rolls,
                "pesos": weight,
            }
            for line, rolls, weight in items
        ],
    }
    return client.post("/fa", json=body)


def test_reception_round_trip(client):
    line = receive(client)

    assert line["id"] == {"section": 1, "day": "2025-03-14", "line": 1}
    assert line["article_code"] == "160"
    assert line["bleach"] is True
    assert line["dye"] is False
    assert line["pending_rolls"] == 20

    fetched = client.get("/recepcao/1/2025-03-14/1")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["client_name"] == "Malhas do Ave, Lda"

    listing = client.get("/recepcao", params={"nome": "AVE"}).json()
    assert listing["pagination"] == {"page": 1, "total": 1, "totalPages": 1}

    clients = client.get("/recepcao/lookup/clientes").json()["data"]
    assert clients == [{"codigo": 120, "nome": "Malhas do Ave, Lda"}]


def test_reception_validation(client):
    response = client.post("/recepcao", json={**RECEPTION, "pesos": 0})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Requested weight must be positive",
        "kind": "validation",
    }


def test_ticket_then_deliveries(client):
    first = receive(client)
    second = receive(client, rolos=5, pesos=50.0)

    created = create_ticket(client, (first, 10, 100.0), (second, 5, 50.0))
    assert created.status_code == 201
    assert created.json()["data"] == {"faNumero": 1, "linhas": 2}

    header = client.get("/processos/ficha-entrada/1").json()["data"]
    assert header["ticket"]["total_rolls"] == 15
    assert header["ticket"]["state"] == "open"
    assert client.get("/processos/ultima-fa").json()["data"]["faNumero"] == 1

    delivered = client.post(
        "/entregas/registar/1", json={"rolos": 10, "pesos": 100.0, "estadoId": 1}
    )
    assert delivered.status_code == 201
    too_much = client.post(
        "/entregas/registar/1", json={"rolos": 6, "pesos": 50.0, "estadoId": 1}
    )
    assert too_much.status_code == 400
    assert too_much.json()["kind"] == "over_delivery"

    final = client.post(
        "/entregas/registar/1", json={"rolos": 5, "pesos": 50.0, "estadoId": 1}
    ).json()["data"]
    assert final["delivered_rolls"] == 15
    assert final["delivered_weight"] == 150.0
    assert final["completed"] is True
    assert len(client.get("/entregas/1").json()["data"]) == 2

    closed = client.post(
        "/entregas/registar/1", json={"rolos": 0, "pesos": 1.0, "estadoId": 1}
    )
    assert closed.json()["kind"] == "ticket_completed"


def test_mixed_client_ticket_is_rejected(client):
    first = receive(client)
    other = receive(client, cliente=87, nome="Tecidos Cávado, SA")

    response = create_ticket(client, (first, 1, 10.0), (other, 1, 10.0))

    assert response.status_code == 400
    assert response.json()["kind"] == "mixed_client"
    assert client.get("/processos/ultima-fa").json()["data"] is None


def test_line_in_use_cannot_be_deleted(client):
    line = receive(client)
    create_ticket(client, (line, 1, 10.0))

    response = client.delete("/recepcao/1/2025-03-14/1")

    assert response.status_code == 400
    assert response.json()["kind"] == "line_in_use"


def test_process_steps_endpoints(client):
    line = receive(client)
    create_ticket(client, (line, 10, 100.0))

    added = client.post("/processos/add/1", json={"processoId": 2, "corId": 1, "rolos": 10})
    assert added.status_code == 201
    assert added.json()["data"]["color_code"] == "AZ-210"

    steps = client.get("/processos/ficha-processos/1").json()["data"]
    assert [step["process_description"] for step in steps] == ["Tingimento"]

    assert client.delete("/processos/remove/1/1").status_code == 200
    assert client.delete("/processos/remove/1/1").status_code == 404
    assert len(client.get("/processos/search/processos").json()["data"]) == 2
    assert client.get("/processos/search/cores").json()["data"][0]["code"] == "AZ-210"


def test_not_found_maps_to_404(client):
    response = client.get("/processos/ficha-entrada/77")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_scan_endpoint(client):
    selected = client.post("/operacoes/registar-leitura", json={"codigoCompleto": "1.06"})

    assert selected.status_code == 200
    body = selected.json()
    assert body["success"] is True
    assert body["operacao"] == "Selecção de máquina"
    assert body["detalhes"]["maquina"] == 6
    assert body["data"]["sequenceNumber"] == 1

    rejected = client.post(
        "/operacoes/registar-leitura", json={"codigoCompleto": "abc", "terminal": "T1"}
    )
    assert rejected.status_code == 400
    assert rejected.json()["kind"] == "decode"

    missing = client.post("/operacoes/registar-leitura", json={"codigoCompleto": "1.55"})
    assert missing.status_code == 404


def test_machine_status_and_panel(client):
    client.post("/operacoes/registar-leitura", json={"codigoCompleto": "1.06"})

    statuses = client.get("/operacoes/maquinas-status").json()["data"]
    assert [status["machine_id"] for status in statuses] == [7, 6]
    assert statuses[1]["activity"] == "free"

    panel = client.get("/operacoes/painel")
    assert panel.status_code == 200
    assert "text/html" in panel.headers["content-type"]
    assert 'http-equiv="refresh" content="30"' in panel.text
    assert "Jet 6" in panel.text


def test_connection_and_states(client):
    assert client.get("/operacoes/test-connection").json()["success"] is True
    states = client.get("/tabelas/estados").json()["data"]
    assert [state["description"] for state in states] == ["Conforme", "Com defeito"]


def test_database_failure_maps_to_500(client, database):
    with database.connect() as con:
        con.execute("DROP TABLE delivery_states")

    response = client.get("/tabelas/estados")

    assert response.status_code == 500
    assert "delivery_states" in response.json()["details"]


def test_demo_data_seeds_empty_database(tmp_path):
    settings = Settings(db_path=tmp_path / "demo.db", seed_demo_data=True)
    app = create_app(settings)
    service: FactoryService = app.state.service

    assert len(service.database.machines) == 6
    assert service.last_ticket().number == 1
    statuses = {s.machine_id: s for s in service.machine_status()}
    assert statuses[1].activity.value == "in"

    ensure_demo_data(FactoryService(FactoryDatabase(settings.db_path), settings))
    assert len(service.database.machines) == 6
