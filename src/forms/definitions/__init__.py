"""Concrete form definitions."""

from .client import ClientField, ClientPayload, VIACEP_FIELD_MAP, build_client_form, viacep_lookup
from .contact import ContactField, ContactPayload, build_contact_form
from .service_report import (
    ServiceReportField,
    ServiceReportPayload,
    build_service_report_form,
    check_visit_window,
)
from .ticket import TicketField, TicketPayload, build_ticket_form
from .user import UserField, UserPayload, build_user_form

__all__ = [
    # Client
    "ClientField",
    "ClientPayload",
    "VIACEP_FIELD_MAP",
    "build_client_form",
    "viacep_lookup",
    # Service report
    "ServiceReportField",
    "ServiceReportPayload",
    "build_service_report_form",
    "check_visit_window",
    # Modals
    "ContactField",
    "ContactPayload",
    "build_contact_form",
    "UserField",
    "UserPayload",
    "build_user_form",
    "TicketField",
    "TicketPayload",
    "build_ticket_form",
]
