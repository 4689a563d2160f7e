"""Contact modal form."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from validation.field_validators import validate_email, validate_phone

from ..masks import MaskKind
from ..schema import FieldSpec, FormDefinition, canonical_record, single_step


class ContactField(str, Enum):
    DS_NOME = "ds_nome"
    DS_EMAIL = "ds_email"
    DS_TELEFONE = "ds_telefone"
    DS_CARGO = "ds_cargo"
    FL_ATIVO = "fl_ativo"
    FL_WHATSAPP = "fl_whatsapp"
    TX_OBSERVACOES = "tx_observacoes"


F = ContactField


class ContactPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    ds_nome: str
    ds_email: str = Field(pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    ds_telefone: Optional[str] = Field(default=None, pattern=r"^\d{10,11}$")
    ds_cargo: str
    fl_ativo: bool = True
    fl_whatsapp: bool = False
    tx_observacoes: Optional[str] = None


def build_contact_form(record: Optional[Mapping[str, Any]] = None) -> FormDefinition:
    fields = [
        FieldSpec(F.DS_NOME, "Nome", required=True),
        FieldSpec(F.DS_EMAIL, "E-mail", required=True, checks=(validate_email,)),
        FieldSpec(F.DS_TELEFONE, "Telefone", mask=MaskKind.PHONE, checks=(validate_phone,)),
        FieldSpec(F.DS_CARGO, "Cargo", required=True),
        FieldSpec(F.FL_ATIVO, "Ativo"),
        FieldSpec(F.FL_WHATSAPP, "WhatsApp"),
        FieldSpec(F.TX_OBSERVACOES, "Observações"),
    ]
    initial_values = {F.FL_ATIVO.value: True, F.FL_WHATSAPP.value: False}
    if record:
        initial_values.update(canonical_record(fields, record))

    return FormDefinition(
        name="contact",
        fields=fields,
        steps=single_step("contato", list(F)),
        payload_model=ContactPayload,
        initial_values=initial_values,
    )
