"""Option catalogs shared by the form definitions."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple, Type


class ContractTier(str, Enum):
    AVANCADO = "Avançado"
    INTERMEDIARIO = "Intermediário"
    BASICO_COM_SUPORTE = "Básico com Suporte"  # only tier with named/concurrent seats


class YesNo(str, Enum):
    SIM = "Sim"
    NAO = "Não"


class Region(str, Enum):
    CAPITAL = "Capital"
    INTERIOR = "Interior"
    EXTERIOR = "Exterior"


class ClientSituation(str, Enum):
    IMPLANTACAO = "Implantação"
    PRODUCAO = "Produção"
    RESTRICAO = "Restrição"
    INATIVO = "Inativo"


class ClientSystem(str, Enum):
    MANUFATURA = "Manufatura"
    CURTUME = "Curtume"
    TRATAMENTO_TERMICO = "Tratamento Térmico"
    OUTROS = "Outros"


class TravelMode(str, Enum):
    """How a service visit was carried out."""
    REMOTE = "R"
    ON_SITE = "P"


class ServiceReportStatus(str, Enum):
    FINALIZADO = "Finalizado"
    PENDENTE = "Pendente"


class ServiceOrigin(str, Enum):
    ANALISE = "Análise"
    CLIENTE = "Cliente"
    COMERCIAL = "Comercial"
    IMPLANTACAO = "Implantação"
    SUPORTE = "Suporte"


class BillingNote(str, Enum):
    ACORDO = "Acordo"
    COLET_PLUS = "Colet+"
    CORTESIA = "Cortesia"


class TicketPriority(str, Enum):
    BAIXA = "baixa"
    MEDIA = "media"
    ALTA = "alta"
    CRITICA = "critica"


class TicketCategory(str, Enum):
    ERRO_DE_SISTEMA = "Erro de Sistema"
    INTEGRACAO = "Integração"
    SOLICITACAO = "Solicitação"
    DUVIDA = "Dúvida"
    ACESSO = "Acesso"
    OUTROS = "Outros"


class TicketStatus(str, Enum):
    ABERTO = "aberto"
    EM_ATENDIMENTO = "em_atendimento"
    PENDENTE = "pendente"
    RESOLVIDO = "resolvido"
    FECHADO = "fechado"


class UserRole(str, Enum):
    ADMINISTRADOR = "Administrador"
    ANALISTA = "Analista"
    DESENVOLVEDOR = "Desenvolvedor"
    IMPLANTADOR = "Implantador"
    SUPORTE = "Suporte"


BRAZILIAN_STATES: Tuple[str, ...] = (
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
    "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
)


def values_of(enum_cls: Type[Enum]) -> Tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


CATALOGS: Dict[str, Tuple[str, ...]] = {
    "contract_tier": values_of(ContractTier),
    "yes_no": values_of(YesNo),
    "region": values_of(Region),
    "client_situation": values_of(ClientSituation),
    "client_system": values_of(ClientSystem),
    "travel_mode": values_of(TravelMode),
    "service_report_status": values_of(ServiceReportStatus),
    "service_origin": values_of(ServiceOrigin),
    "billing_note": values_of(BillingNote),
    "ticket_priority": values_of(TicketPriority),
    "ticket_category": values_of(TicketCategory),
    "ticket_status": values_of(TicketStatus),
    "user_role": values_of(UserRole),
    "state": BRAZILIAN_STATES,
}
