"""User modal form.

The password is only asked for when creating a user; editing leaves it
optional and unvalidated so an unchanged password is simply not sent.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from validation.field_validators import validate_email, validate_min_length

from ..catalogs import CATALOGS
from ..schema import FieldSpec, FormDefinition, FormMode, canonical_record, single_step

PASSWORD_MIN_LENGTH = 6


class UserField(str, Enum):
    NOME = "nome"
    EMAIL = "email"
    FUNCAO = "funcao"
    SENHA = "senha"


F = UserField


class UserPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nome: str
    email: str = Field(pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    funcao: str
    senha: Optional[str] = None


def build_user_form(
    mode: FormMode = FormMode.CREATE,
    record: Optional[Mapping[str, Any]] = None,
) -> FormDefinition:
    creating = FormMode(mode) is FormMode.CREATE
    short_password = f"Senha deve ter pelo menos {PASSWORD_MIN_LENGTH} caracteres"

    password = FieldSpec(F.SENHA, "Senha")
    if creating:
        password = FieldSpec(
            F.SENHA,
            "Senha",
            required=True,
            required_message=short_password,
            checks=(lambda value: validate_min_length(value, PASSWORD_MIN_LENGTH, "Senha"),),
        )

    fields = [
        FieldSpec(F.NOME, "Nome", required=True),
        FieldSpec(F.EMAIL, "E-mail", required=True, checks=(validate_email,)),
        FieldSpec(F.FUNCAO, "Função", required=True, required_message="Função é obrigatória",
                  catalog="user_role"),
        password,
    ]

    initial_values = {}
    if record:
        # stored password hashes never come back into the form
        initial_values = {
            k: v for k, v in canonical_record(fields, record).items() if k != F.SENHA.value
        }

    return FormDefinition(
        name="user",
        fields=fields,
        steps=single_step("usuario", list(F)),
        payload_model=UserPayload,
        catalogs=CATALOGS,
        initial_values=initial_values,
    )
