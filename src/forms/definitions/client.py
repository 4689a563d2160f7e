"""
Client registration / edit form.

Three-step wizard:

1. identificacao: company name, legal name, CNPJ
2. endereco: CEP with address autofill, street, number, city, state
3. contrato: situation, system, contract tier, travel diary and pricing

Dependencies:

- Seats (named / concurrent) only apply to the "Básico com Suporte" tier.
- Region and the on-site pricing fields only apply when the client has a
  travel diary; the region is then mandatory.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.settings import FormEngineSettings, get_settings
from validation.field_validators import (
    parse_number,
    validate_number,
    validate_postal_code,
    validate_tax_id,
)

from ..catalogs import CATALOGS, ContractTier, YesNo
from ..enrichment import EnrichmentRequest, LookupService, MergePolicy
from ..exceptions import LookupNotFound
from ..masks import MaskKind
from ..rules import DependencyRule, InactivePolicy
from ..schema import FieldSpec, FormDefinition, FormMode, canonical_record
from ..wizard import WizardStep


class ClientField(str, Enum):
    # identificacao
    DS_NOME = "ds_nome"
    DS_RAZAO_SOCIAL = "ds_razao_social"
    FL_MATRIZ = "fl_matriz"
    NR_CNPJ = "nr_cnpj"
    NR_INSCRICAO_ESTADUAL = "nr_inscricao_estadual"
    DS_SITE = "ds_site"
    TX_OBSERVACAO_IDENT = "tx_observacao_ident"
    # endereco
    DS_CEP = "ds_cep"
    DS_UF = "ds_uf"
    DS_CIDADE = "ds_cidade"
    DS_BAIRRO = "ds_bairro"
    DS_ENDERECO = "ds_endereco"
    NR_NUMERO = "nr_numero"
    NR_CODIGO_IBGE = "nr_codigo_ibge"
    DS_COMPLEMENTO = "ds_complemento"
    NR_LATITUDE = "nr_latitude"
    NR_LONGITUDE = "nr_longitude"
    # contrato
    DS_SITUACAO = "ds_situacao"
    DS_SISTEMA = "ds_sistema"
    DT_DATA_CONTRATO = "dt_data_contrato"
    NR_CODIGO_ZZ = "nr_codigo_zz"
    DS_CONTRATO = "ds_contrato"
    NR_NOMEADOS = "nr_nomeados"
    NR_SIMULTANEOS = "nr_simultaneos"
    DS_DIARIO_VIAGEM = "ds_diario_viagem"
    DS_REGIAO = "ds_regiao"
    NR_TECNICA_REMOTO = "nr_tecnica_remoto"
    NR_TECNICA_PRESENCIAL = "nr_tecnica_presencial"
    TM_MINIMO_HORAS = "tm_minimo_horas"
    NR_DISTANCIA_KM = "nr_distancia_km"
    NR_FRANQUIA_NF = "nr_franquia_nf"
    NR_QTDE_DOCUMENTOS = "nr_qtde_documentos"
    NR_VALOR_FRANQIA = "nr_valor_franqia"
    NR_VALOR_EXCENDENTE = "nr_valor_excendente"
    TX_OBSERVACAO_CONTRATO = "tx_observacao_contrato"


F = ClientField

# ViaCEP answer keys -> form fields
VIACEP_FIELD_MAP: Dict[str, str] = {
    "logradouro": F.DS_ENDERECO.value,
    "bairro": F.DS_BAIRRO.value,
    "localidade": F.DS_CIDADE.value,
    "uf": F.DS_UF.value,
    "ibge": F.NR_CODIGO_IBGE.value,
}


def viacep_lookup(fetch_json: Callable[[str], Awaitable[Optional[Mapping[str, Any]]]]) -> LookupService:
    """
    Wrap a raw ViaCEP fetcher as a lookup service.

    ViaCEP answers an unknown CEP with ``{"erro": true}`` instead of an HTTP
    error; that answer is turned into :class:`LookupNotFound`.
    """
    async def lookup(cep: str) -> Mapping[str, Any]:
        data = await fetch_json(cep)
        if not data or data.get("erro"):
            raise LookupNotFound(cep)
        return data

    return lookup


class ClientPayload(BaseModel):
    """Client record as sent to the API."""

    model_config = ConfigDict(str_strip_whitespace=True)

    ds_nome: str
    ds_razao_social: str
    fl_matriz: bool = True
    nr_cnpj: str = Field(pattern=r"^\d{14}$")
    nr_inscricao_estadual: Optional[str] = None
    ds_site: Optional[str] = None
    tx_observacao_ident: Optional[str] = None

    ds_cep: str = Field(pattern=r"^\d{8}$")
    ds_uf: str = Field(min_length=2, max_length=2)
    ds_cidade: str
    ds_bairro: str
    ds_endereco: str
    nr_numero: str
    nr_codigo_ibge: Optional[str] = None
    ds_complemento: Optional[str] = None
    nr_latitude: Optional[Decimal] = None
    nr_longitude: Optional[Decimal] = None

    ds_situacao: str
    ds_sistema: Optional[str] = None
    dt_data_contrato: Optional[date] = None
    nr_codigo_zz: Optional[str] = None
    ds_contrato: Optional[str] = None
    nr_nomeados: Optional[int] = Field(default=None, ge=0)
    nr_simultaneos: Optional[int] = Field(default=None, ge=0)
    ds_diario_viagem: Optional[str] = None
    ds_regiao: Optional[str] = None
    nr_tecnica_remoto: Optional[Decimal] = None
    nr_tecnica_presencial: Optional[Decimal] = None
    tm_minimo_horas: Optional[str] = None
    nr_distancia_km: Optional[Decimal] = Field(default=None, ge=0)
    nr_franquia_nf: Optional[int] = Field(default=None, ge=0)
    nr_qtde_documentos: Optional[int] = Field(default=None, ge=0)
    nr_valor_franqia: Optional[Decimal] = None
    nr_valor_excendente: Optional[Decimal] = None
    tx_observacao_contrato: Optional[str] = None

    @field_validator("nr_latitude", "nr_longitude", "nr_distancia_km", mode="before")
    @classmethod
    def _parse_typed_number(cls, value: Any) -> Any:
        number = parse_number(value)
        return value if number is None else number


def _count(label: str):
    return lambda value: validate_number(value, label)


def build_client_form(
    lookup: Optional[LookupService] = None,
    mode: FormMode = FormMode.CREATE,
    record: Optional[Mapping[str, Any]] = None,
    settings: Optional[FormEngineSettings] = None,
) -> FormDefinition:
    """
    Build the client form.

    Args:
        lookup: CEP lookup service; without it the address is typed by hand
        mode: Create requires the whole contract block, edit only the situation
        record: Existing client when editing
        settings: Engine settings (defaults to cached settings)
    """
    settings = settings or get_settings()
    creating = FormMode(mode) is FormMode.CREATE
    cep_length = settings.postal_code_length

    fields = [
        FieldSpec(F.DS_NOME, "Nome", required=True,
                  required_message="Nome da empresa é obrigatório"),
        FieldSpec(F.DS_RAZAO_SOCIAL, "Razão social", required=True,
                  required_message="Razão social é obrigatória"),
        FieldSpec(F.FL_MATRIZ, "Matriz"),
        FieldSpec(F.NR_CNPJ, "CNPJ", mask=MaskKind.TAX_ID, required=True,
                  required_message="CNPJ é obrigatório", checks=(validate_tax_id,)),
        FieldSpec(F.NR_INSCRICAO_ESTADUAL, "Inscrição estadual"),
        FieldSpec(F.DS_SITE, "Site"),
        FieldSpec(F.TX_OBSERVACAO_IDENT, "Observações"),

        FieldSpec(F.DS_CEP, "CEP", mask=MaskKind.POSTAL_CODE, required=True,
                  required_message="CEP é obrigatório",
                  checks=(lambda value: validate_postal_code(value, cep_length),)),
        FieldSpec(F.DS_UF, "UF", required=True, required_message="UF é obrigatória",
                  catalog="state"),
        FieldSpec(F.DS_CIDADE, "Cidade", required=True, required_message="Cidade é obrigatória"),
        FieldSpec(F.DS_BAIRRO, "Bairro", required=True),
        FieldSpec(F.DS_ENDERECO, "Endereço", required=True),
        FieldSpec(F.NR_NUMERO, "Número", required=True),
        FieldSpec(F.NR_CODIGO_IBGE, "Código IBGE"),
        FieldSpec(F.DS_COMPLEMENTO, "Complemento"),
        FieldSpec(F.NR_LATITUDE, "Latitude",
                  checks=(lambda v: validate_number(v, "Latitude", allow_negative=True),)),
        FieldSpec(F.NR_LONGITUDE, "Longitude",
                  checks=(lambda v: validate_number(v, "Longitude", allow_negative=True),)),

        FieldSpec(F.DS_SITUACAO, "Situação", required=True,
                  required_message="Situação é obrigatória", catalog="client_situation"),
        FieldSpec(F.DS_SISTEMA, "Sistema", required=creating, catalog="client_system"),
        FieldSpec(F.DT_DATA_CONTRATO, "Data do contrato"),
        FieldSpec(F.NR_CODIGO_ZZ, "Código ZZ"),
        FieldSpec(F.DS_CONTRATO, "Contrato", required=creating, catalog="contract_tier"),
        FieldSpec(F.NR_NOMEADOS, "Nomeados", checks=(_count("Nomeados"),)),
        FieldSpec(F.NR_SIMULTANEOS, "Simultâneos", checks=(_count("Simultâneos"),)),
        FieldSpec(F.DS_DIARIO_VIAGEM, "Diário de Viagem", required=creating, catalog="yes_no"),
        FieldSpec(F.DS_REGIAO, "Região", catalog="region",
                  required_message="Região é obrigatória quando há diário de viagem"),
        FieldSpec(F.NR_TECNICA_REMOTO, "Técnica remoto", mask=MaskKind.CURRENCY),
        FieldSpec(F.NR_TECNICA_PRESENCIAL, "Técnica presencial", mask=MaskKind.CURRENCY),
        FieldSpec(F.TM_MINIMO_HORAS, "Mínimo de horas", mask=MaskKind.DURATION),
        FieldSpec(F.NR_DISTANCIA_KM, "Distância (km)", checks=(_count("Distância"),)),
        FieldSpec(F.NR_FRANQUIA_NF, "Franquia NF", checks=(_count("Franquia NF"),)),
        FieldSpec(F.NR_QTDE_DOCUMENTOS, "Quantidade de documentos",
                  checks=(_count("Quantidade de documentos"),)),
        FieldSpec(F.NR_VALOR_FRANQIA, "Valor da franquia", mask=MaskKind.CURRENCY),
        FieldSpec(F.NR_VALOR_EXCENDENTE, "Valor excedente", mask=MaskKind.CURRENCY),
        FieldSpec(F.TX_OBSERVACAO_CONTRATO, "Observações do contrato"),
    ]

    steps = [
        WizardStep(
            id="identificacao",
            title="Identificação",
            fields=(F.DS_NOME, F.DS_RAZAO_SOCIAL, F.FL_MATRIZ, F.NR_CNPJ,
                    F.NR_INSCRICAO_ESTADUAL, F.DS_SITE, F.TX_OBSERVACAO_IDENT),
        ),
        WizardStep(
            id="endereco",
            title="Endereço",
            fields=(F.DS_CEP, F.DS_UF, F.DS_CIDADE, F.DS_BAIRRO, F.DS_ENDERECO, F.NR_NUMERO,
                    F.NR_CODIGO_IBGE, F.DS_COMPLEMENTO, F.NR_LATITUDE, F.NR_LONGITUDE),
        ),
        WizardStep(
            id="contrato",
            title="Contrato",
            fields=(F.DS_SITUACAO, F.DS_SISTEMA, F.DT_DATA_CONTRATO, F.NR_CODIGO_ZZ,
                    F.DS_CONTRATO, F.NR_NOMEADOS, F.NR_SIMULTANEOS, F.DS_DIARIO_VIAGEM,
                    F.DS_REGIAO, F.NR_TECNICA_REMOTO, F.NR_TECNICA_PRESENCIAL,
                    F.TM_MINIMO_HORAS, F.NR_DISTANCIA_KM, F.NR_FRANQUIA_NF,
                    F.NR_QTDE_DOCUMENTOS, F.NR_VALOR_FRANQIA, F.NR_VALOR_EXCENDENTE,
                    F.TX_OBSERVACAO_CONTRATO),
        ),
    ]

    rules = [
        DependencyRule(
            name="seats_for_supported_tier",
            trigger=F.DS_CONTRATO,
            predicate={"field": F.DS_CONTRATO, "equals": ContractTier.BASICO_COM_SUPORTE.value},
            affected=(F.NR_NOMEADOS, F.NR_SIMULTANEOS),
            on_inactive=InactivePolicy.BOTH,
        ),
        DependencyRule(
            name="travel_diary",
            trigger=F.DS_DIARIO_VIAGEM,
            predicate={"field": F.DS_DIARIO_VIAGEM, "equals": YesNo.SIM.value},
            affected=(F.DS_REGIAO, F.NR_TECNICA_PRESENCIAL, F.TM_MINIMO_HORAS, F.NR_DISTANCIA_KM),
            on_inactive=InactivePolicy.BOTH,
            required=(F.DS_REGIAO,),
        ),
    ]

    enrichments = []
    if lookup is not None:
        enrichments.append(EnrichmentRequest(
            trigger_field=F.DS_CEP,
            fetch=lookup,
            key_length=cep_length,
            debounce_ms=settings.lookup_debounce_ms,
            merge_policy=MergePolicy.FILL_EMPTY_ONLY,
            field_map=VIACEP_FIELD_MAP,
        ))

    initial_values: Dict[str, Any] = {F.FL_MATRIZ.value: True}
    if record:
        initial_values.update(canonical_record(fields, record))

    return FormDefinition(
        name="client",
        fields=fields,
        steps=steps,
        payload_model=ClientPayload,
        rules=rules,
        enrichments=enrichments,
        catalogs=CATALOGS,
        initial_values=initial_values,
    )
