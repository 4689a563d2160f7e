"""Support ticket registration form."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..catalogs import CATALOGS, TicketPriority, TicketStatus
from ..schema import FieldSpec, FormDefinition, single_step


class TicketField(str, Enum):
    DS_TITULO = "ds_titulo"
    DS_DESCRICAO = "ds_descricao"
    DS_CATEGORIA = "ds_categoria"
    DS_PRIORIDADE = "ds_prioridade"
    DS_STATUS = "ds_status"
    ID_CLIENTE = "id_cliente"
    ID_SOLICITANTE = "id_solicitante"
    ID_ATENDENTE = "id_atendente"


F = TicketField


class TicketPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    ds_titulo: str
    ds_descricao: Optional[str] = None
    ds_categoria: str
    ds_prioridade: TicketPriority
    ds_status: TicketStatus
    id_cliente: int = Field(gt=0)
    id_solicitante: int = Field(gt=0)
    id_atendente: Optional[int] = Field(default=None, gt=0)


def build_ticket_form(current_user_id: Optional[int] = None) -> FormDefinition:
    fields = [
        FieldSpec(F.DS_TITULO, "Título", required=True),
        FieldSpec(F.DS_DESCRICAO, "Descrição"),
        FieldSpec(F.DS_CATEGORIA, "Categoria", required=True,
                  required_message="Categoria é obrigatória", catalog="ticket_category"),
        FieldSpec(F.DS_PRIORIDADE, "Prioridade", required=True,
                  required_message="Prioridade é obrigatória", catalog="ticket_priority"),
        FieldSpec(F.DS_STATUS, "Status", required=True, catalog="ticket_status"),
        FieldSpec(F.ID_CLIENTE, "Cliente", required=True, zero_is_empty=True),
        FieldSpec(F.ID_SOLICITANTE, "Solicitante", required=True, zero_is_empty=True),
        FieldSpec(F.ID_ATENDENTE, "Atendente", zero_is_empty=True),
    ]
    return FormDefinition(
        name="ticket",
        fields=fields,
        steps=single_step("chamado", list(F)),
        payload_model=TicketPayload,
        catalogs=CATALOGS,
        initial_values={
            F.DS_PRIORIDADE.value: TicketPriority.MEDIA.value,
            F.DS_STATUS.value: TicketStatus.ABERTO.value,
            F.ID_CLIENTE.value: 0,
            F.ID_SOLICITANTE.value: current_user_id or 0,
        },
    )
