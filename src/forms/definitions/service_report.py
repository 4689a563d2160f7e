"""
Service report (RAT) registration form.

Single page. The visit duration is derived from the entry/exit timestamps,
the travelled distance from the two odometer readings, and (when a per-km
rate is configured) the travel cost from the distance and the toll. Remote
visits (``fl_deslocamento = 'R'``) lock and clear the odometer and toll
fields; on-site visits (``'P'``) require them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.settings import FormEngineSettings, get_settings
from validation.field_validators import parse_number, validate_number, validate_ordering

from ..catalogs import CATALOGS, ServiceReportStatus, TravelMode
from ..derived import (
    ORDERING_MESSAGE,
    DistanceTotal,
    IntervalDuration,
    TravelCost,
    parse_timestamp,
)
from ..masks import MaskKind
from ..rules import DependencyRule, InactivePolicy
from ..schema import FieldSpec, FormDefinition, canonical_record, single_step
from ..state import FieldErrors, FormState

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"


class ServiceReportField(str, Enum):
    ID_USUARIO = "id_usuario"
    ID_CLIENTE = "id_cliente"
    ID_CONTATO = "id_contato"
    DS_ORIGINADA = "ds_originada"
    DT_DATA_HORA_ENTRADA = "dt_data_hora_entrada"
    DT_DATA_HORA_SAIDA = "dt_data_hora_saida"
    TM_DURACAO = "tm_duracao"
    DS_OBSERVACAO = "ds_observacao"
    DS_STATUS = "ds_status"
    TX_COMENTARIO_INTERNO = "tx_comentario_interno"
    FL_DESLOCAMENTO = "fl_deslocamento"
    NR_KM_IDA = "nr_km_ida"
    NR_KM_VOLTA = "nr_km_volta"
    NR_VALOR_PEDAGIO = "nr_valor_pedagio"
    TOTAL_KM = "total_km"
    NR_VALOR_DESLOCAMENTO = "nr_valor_deslocamento"
    TX_ATIVIDADES = "tx_atividades"
    TX_TAREFAS = "tx_tarefas"
    TX_PENDENCIAS = "tx_pendencias"


F = ServiceReportField


class ServiceReportPayload(BaseModel):
    """RAT as sent to the API; derived totals are display-only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id_usuario: int = Field(gt=0)
    id_cliente: int = Field(gt=0)
    id_contato: int = Field(gt=0)
    ds_originada: Optional[str] = None
    dt_data_hora_entrada: datetime
    dt_data_hora_saida: datetime
    tm_duracao: Optional[str] = None
    ds_observacao: Optional[str] = None
    ds_status: str
    tx_comentario_interno: Optional[str] = None
    fl_deslocamento: str
    nr_km_ida: Optional[Decimal] = None
    nr_km_volta: Optional[Decimal] = None
    nr_valor_pedagio: Optional[Decimal] = None
    tx_atividades: str
    tx_tarefas: Optional[str] = None
    tx_pendencias: Optional[str] = None

    @field_validator("dt_data_hora_entrada", "dt_data_hora_saida", mode="before")
    @classmethod
    def _parse_local_timestamp(cls, value: Any) -> Any:
        return parse_timestamp(value) or value

    @field_validator("nr_km_ida", "nr_km_volta", mode="before")
    @classmethod
    def _parse_reading(cls, value: Any) -> Any:
        number = parse_number(value)
        return value if number is None else number


def check_visit_window(state: FormState) -> FieldErrors:
    """Exit must not come before entry."""
    ok, message = validate_ordering(
        parse_timestamp(state[F.DT_DATA_HORA_ENTRADA]),
        parse_timestamp(state[F.DT_DATA_HORA_SAIDA]),
        ORDERING_MESSAGE,
    )
    return {} if ok else {F.DT_DATA_HORA_SAIDA.value: message}


def _km(label: str):
    return lambda value: validate_number(value, label)


def build_service_report_form(
    current_user_id: Optional[int] = None,
    record: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
    settings: Optional[FormEngineSettings] = None,
) -> FormDefinition:
    """
    Build the RAT form.

    Args:
        current_user_id: Pre-selected technician
        record: Existing RAT values to start from
        now: Clock used for the default entry/exit timestamps
        settings: Engine settings; ``travel_km_rate`` enables the travel cost
    """
    settings = settings or get_settings()
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)

    fields = [
        FieldSpec(F.ID_USUARIO, "Usuário", required=True, zero_is_empty=True),
        FieldSpec(F.ID_CLIENTE, "Cliente", required=True, zero_is_empty=True),
        FieldSpec(F.ID_CONTATO, "Contato", required=True, zero_is_empty=True),
        FieldSpec(F.DS_ORIGINADA, "Originada", catalog="service_origin"),
        FieldSpec(F.DT_DATA_HORA_ENTRADA, "Data/hora de entrada", required=True,
                  required_message="Data/hora de entrada é obrigatória"),
        FieldSpec(F.DT_DATA_HORA_SAIDA, "Data/hora de saída", required=True,
                  required_message="Data/hora de saída é obrigatória"),
        FieldSpec(F.TM_DURACAO, "Duração", mask=MaskKind.DURATION),
        FieldSpec(F.DS_OBSERVACAO, "Observação", catalog="billing_note"),
        FieldSpec(F.DS_STATUS, "Status", required=True, catalog="service_report_status"),
        FieldSpec(F.TX_COMENTARIO_INTERNO, "Comentário interno"),
        FieldSpec(F.FL_DESLOCAMENTO, "Deslocamento", required=True, catalog="travel_mode"),
        FieldSpec(F.NR_KM_IDA, "KM de ida", checks=(_km("KM de ida"),),
                  required_message="KM de ida é obrigatório quando há deslocamento"),
        FieldSpec(F.NR_KM_VOLTA, "KM de volta", checks=(_km("KM de volta"),),
                  required_message="KM de volta é obrigatório quando há deslocamento"),
        FieldSpec(F.NR_VALOR_PEDAGIO, "Pedágio", mask=MaskKind.CURRENCY,
                  required_message="Pedágio é obrigatório quando há deslocamento"),
        FieldSpec(F.TOTAL_KM, "Total KM", read_only=True),
        FieldSpec(F.NR_VALOR_DESLOCAMENTO, "Valor do deslocamento", mask=MaskKind.CURRENCY,
                  read_only=True),
        FieldSpec(F.TX_ATIVIDADES, "Atividades", required=True,
                  required_message="Atividades realizadas são obrigatórias"),
        FieldSpec(F.TX_TAREFAS, "Tarefas"),
        FieldSpec(F.TX_PENDENCIAS, "Pendências"),
    ]

    rules = [
        DependencyRule(
            name="on_site_travel",
            trigger=F.FL_DESLOCAMENTO,
            predicate={"field": F.FL_DESLOCAMENTO, "equals": TravelMode.ON_SITE.value},
            affected=(F.NR_KM_IDA, F.NR_KM_VOLTA, F.NR_VALOR_PEDAGIO),
            on_inactive=InactivePolicy.BOTH,
            required=(F.NR_KM_IDA, F.NR_KM_VOLTA, F.NR_VALOR_PEDAGIO),
        ),
    ]

    derivations = [
        IntervalDuration(entry=F.DT_DATA_HORA_ENTRADA, exit=F.DT_DATA_HORA_SAIDA, duration=F.TM_DURACAO),
        DistanceTotal(outbound=F.NR_KM_IDA, inbound=F.NR_KM_VOLTA, total=F.TOTAL_KM),
    ]
    if settings.travel_km_rate > 0:
        derivations.append(TravelCost(
            distance=F.TOTAL_KM,
            toll=F.NR_VALOR_PEDAGIO,
            cost=F.NR_VALOR_DESLOCAMENTO,
            rate=settings.travel_km_rate,
        ))

    initial_values: Dict[str, Any] = {
        F.DS_STATUS.value: ServiceReportStatus.FINALIZADO.value,
        F.FL_DESLOCAMENTO.value: TravelMode.REMOTE.value,
        F.DT_DATA_HORA_ENTRADA.value: stamp,
        F.DT_DATA_HORA_SAIDA.value: stamp,
        F.ID_USUARIO.value: current_user_id or 0,
        F.ID_CLIENTE.value: 0,
        F.ID_CONTATO.value: 0,
    }
    if record:
        initial_values.update(canonical_record(fields, record))

    return FormDefinition(
        name="service_report",
        fields=fields,
        steps=single_step("rat", [spec.name for spec in fields], validate=check_visit_window),
        payload_model=ServiceReportPayload,
        rules=rules,
        derivations=derivations,
        catalogs=CATALOGS,
        initial_values=initial_values,
    )
