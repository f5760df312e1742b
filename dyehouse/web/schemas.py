"""Request bodies accepted by the HTTP layer."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _yes_no(value: object) -> object:
    if isinstance(value, str) and value.strip().upper() in {"S", "N"}:
        return value.strip().upper() == "S"
    return value


class ReceptionIn(BaseModel):
    seccao: Optional[int] = None
    data: date
    cliente: int
    nome: str
    codigo: str
    descricao: str
    composicao: int = 0
    composicao_descricao: str = ""
    rolos: int = Field(ge=0)
    pesos: float
    requisicao: str = ""
    branquear: bool = False
    desencolar: bool = False
    tingir: bool = False
    utilizador: str = "SYSTEM"

    @field_validator("codigo", mode="before")
    @classmethod
    def _article_code(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("branquear", "desencolar", "tingir", mode="before")
    @classmethod
    def _flags(cls, value: object) -> object:
        return _yes_no(value)


class TicketItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    seccao: int = Field(alias="movRecSeccao")
    data: date = Field(alias="movRecData")
    linha: int = Field(alias="movRecLinha")
    rolos: int = 0
    pesos: float = 0.0


class TicketIn(BaseModel):
    seccao: Optional[int] = None
    data: Optional[date] = None
    obs: str = ""
    itens: List[TicketItemIn]


class ProcessStepIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    processo_id: int = Field(alias="processoId")
    cor_id: Optional[int] = Field(default=None, alias="corId")
    rolos: int = 0
    pesos: float = 0.0
    observacoes: str = ""


class DeliveryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rolos: int = 0
    pesos: float
    estado_id: int = Field(alias="estadoId")
    observacoes: str = ""


class ScanIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    codigo_completo: str = Field(alias="codigoCompleto")
    terminal: Optional[str] = None


__all__ = [
    "ReceptionIn",
    "TicketItemIn",
    "TicketIn",
    "ProcessStepIn",
    "DeliveryIn",
    "ScanIn",
]
