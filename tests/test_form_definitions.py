"""Tests for form definitions and the concrete forms."""

from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel, Field

from forms.catalogs import CATALOGS, TicketPriority
from forms.definitions import (
    ClientField,
    ContactField,
    ServiceReportField,
    TicketField,
    UserField,
    build_client_form,
    build_contact_form,
    build_service_report_form,
    build_ticket_form,
    build_user_form,
    viacep_lookup,
)
from forms.engine import FormEngine
from forms.enrichment import EnrichmentRequest
from forms.exceptions import ConfigurationError, LookupNotFound, UnknownFieldError
from forms.masks import MaskKind
from forms.schema import FieldSpec, FormDefinition, FormMode, canonical_record, single_step
from forms.wizard import SubmitOutcomeKind, WizardStep


class NotePayload(BaseModel):
    titulo: str
    valor: Optional[Decimal] = None


def note_fields():
    return [
        FieldSpec("titulo", "Título", required=True),
        FieldSpec("valor", "Valor", mask=MaskKind.CURRENCY),
    ]


class TestDefinitionChecks:
    """Tests for configuration errors raised when a form is built."""

    def test_minimal_definition(self):
        definition = FormDefinition(
            name="note", fields=note_fields(), steps=single_step("one", ["titulo", "valor"]),
            payload_model=NotePayload,
        )
        assert definition.field_names == ("titulo", "valor")
        assert definition.initial_state()["titulo"] is None

    def test_duplicate_field(self):
        fields = note_fields() + [FieldSpec("titulo", "Outro")]
        with pytest.raises(ConfigurationError, match="declared twice"):
            FormDefinition(name="note", fields=fields, steps=single_step("one", ["titulo"]),
                           payload_model=NotePayload)

    def test_unknown_mask_kind(self):
        with pytest.raises(ConfigurationError):
            FieldSpec("valor", "Valor", mask="roman_numeral")

    def test_unknown_catalog(self):
        fields = [FieldSpec("titulo", "Título", catalog="planets")]
        with pytest.raises(ConfigurationError, match="unknown catalog"):
            FormDefinition(name="note", fields=fields, steps=single_step("one", ["titulo"]),
                           payload_model=NotePayload)

    def test_step_with_undeclared_field(self):
        with pytest.raises(ConfigurationError, match="undeclared"):
            FormDefinition(name="note", fields=note_fields(), steps=single_step("one", ["autor"]),
                           payload_model=NotePayload)

    def test_field_in_two_steps(self):
        steps = [WizardStep(id="a", fields=("titulo",)), WizardStep(id="b", fields=("titulo", "valor"))]
        with pytest.raises(ConfigurationError):
            FormDefinition(name="note", fields=note_fields(), steps=steps, payload_model=NotePayload)

    def test_no_steps(self):
        with pytest.raises(ConfigurationError):
            FormDefinition(name="note", fields=note_fields(), steps=[], payload_model=NotePayload)

    def test_lookup_on_undeclared_trigger(self):
        request = EnrichmentRequest("ds_cep", AsyncMock(), key_length=8)
        with pytest.raises(ConfigurationError, match="trigger"):
            FormDefinition(name="note", fields=note_fields(), steps=single_step("one", ["titulo"]),
                           payload_model=NotePayload, enrichments=[request])

    def test_undeclared_initial_value(self):
        with pytest.raises(UnknownFieldError):
            FormDefinition(name="note", fields=note_fields(), steps=single_step("one", ["titulo"]),
                           payload_model=NotePayload, initial_values={"autor": "Ana"})

    def test_spec_lookup(self):
        definition = build_contact_form()
        assert definition.spec(ContactField.DS_TELEFONE).mask is MaskKind.PHONE
        with pytest.raises(UnknownFieldError):
            definition.spec("ds_cnpj")

    def test_model_rejection_uses_field_label(self):
        class StrictNote(BaseModel):
            titulo: str = Field(min_length=5)

        definition = FormDefinition(
            name="note", fields=note_fields(), steps=single_step("one", ["titulo", "valor"]),
            payload_model=StrictNote,
        )
        state = definition.initial_state().with_value("titulo", "Oi")

        payload, errors = definition.build_payload(state, definition.evaluator.evaluate(state))

        assert payload is None
        assert errors == {"titulo": "Título inválido"}


class TestFieldSpec:
    """Tests for per-field validation."""

    def test_optional_empty_field_has_no_error(self):
        assert FieldSpec("valor", "Valor").validate(None, False, {}) is None

    def test_rule_required_uses_custom_message(self):
        spec = FieldSpec("ds_regiao", "Região", required_message="Região é obrigatória")
        assert spec.validate(None, True, {}) == "Região é obrigatória"

    def test_catalog_before_checks(self):
        spec = FieldSpec("ds_regiao", "Região", catalog="region", checks=(lambda v: (False, "nunca"),))
        assert spec.validate("Lua", False, CATALOGS) == "Opção inválida para Região: Lua"
        assert spec.validate("Capital", False, CATALOGS) == "nunca"


class TestCanonicalRecord:
    """Tests for loading stored records into forms."""

    def test_masks_and_undeclared_keys(self):
        fields = [
            FieldSpec("nr_cnpj", "CNPJ", mask=MaskKind.TAX_ID),
            FieldSpec("nr_valor", "Valor", mask=MaskKind.CURRENCY),
            FieldSpec("tm_minimo", "Mínimo", mask=MaskKind.DURATION),
            FieldSpec("ds_nome", "Nome"),
        ]
        record = {
            "id": 42,
            "nr_cnpj": "11.222.333/0001-81",
            "nr_valor": 150.5,
            "tm_minimo": "02:00:00",
            "ds_nome": "ACME",
            "created_at": "2024-01-01",
        }

        values = canonical_record(fields, record)

        assert values == {
            "nr_cnpj": "11222333000181",
            "nr_valor": Decimal("150.5"),
            "tm_minimo": "02:00:00",
            "ds_nome": "ACME",
        }


class TestClientForm:
    """Tests for the client definition."""

    def test_steps(self):
        definition = build_client_form()
        assert [step.id for step in definition.steps] == ["identificacao", "endereco", "contrato"]
        assert definition.enrichments == []

    def test_edit_mode_only_requires_situation(self, submit_service, settings):
        record = {
            "id": 9,
            "ds_nome": "ACME",
            "nr_cnpj": "11.222.333/0001-81",
            "ds_situacao": "Produção",
            "nr_tecnica_remoto": 150,
        }
        definition = build_client_form(mode=FormMode.EDIT, record=record, settings=settings)
        engine = FormEngine(definition, submit_service, settings=settings)

        assert engine.value(ClientField.NR_CNPJ) == "11222333000181"
        assert engine.value(ClientField.NR_TECNICA_REMOTO) == Decimal("150")
        assert engine.is_required(ClientField.DS_SITUACAO)
        assert not engine.is_required(ClientField.DS_CONTRATO)
        assert not engine.is_required(ClientField.DS_DIARIO_VIAGEM)

    def test_create_mode_requires_contract_block(self, submit_service, settings):
        engine = FormEngine(build_client_form(settings=settings), submit_service, settings=settings)
        assert engine.is_required(ClientField.DS_CONTRATO)
        assert engine.is_required(ClientField.DS_SISTEMA)


class TestViaCepLookup:
    """Tests for the ViaCEP answer adapter."""

    @pytest.mark.asyncio
    async def test_found(self):
        lookup = viacep_lookup(AsyncMock(return_value={"logradouro": "Praça da Sé"}))
        assert await lookup("01001000") == {"logradouro": "Praça da Sé"}

    @pytest.mark.asyncio
    async def test_erro_answer_is_not_found(self):
        lookup = viacep_lookup(AsyncMock(return_value={"erro": True}))
        with pytest.raises(LookupNotFound):
            await lookup("99999999")

    @pytest.mark.asyncio
    async def test_empty_answer_is_not_found(self):
        lookup = viacep_lookup(AsyncMock(return_value=None))
        with pytest.raises(LookupNotFound):
            await lookup("99999999")


class TestServiceReportForm:
    """Tests for the RAT definition."""

    def test_travel_cost_only_with_rate(self, settings, fixed_now):
        definition = build_service_report_form(now=fixed_now, settings=settings)
        assert ServiceReportField.NR_VALOR_DESLOCAMENTO.value not in definition.calculator.derived_fields()

    def test_record_overrides_defaults(self, settings, fixed_now):
        definition = build_service_report_form(
            now=fixed_now,
            settings=settings,
            record={"id_rat": 1, "fl_deslocamento": "P", "nr_km_ida": "10", "ds_status": "Pendente"},
        )
        state = definition.initial_state()
        assert state[ServiceReportField.FL_DESLOCAMENTO] == "P"
        assert state[ServiceReportField.DS_STATUS] == "Pendente"
        assert state[ServiceReportField.DT_DATA_HORA_ENTRADA] == "2024-01-01T09:00"


class TestModalForms:
    """Tests for the contact, user and ticket modals."""

    @pytest.mark.asyncio
    async def test_contact_form(self, submit_service, settings):
        engine = FormEngine(build_contact_form(), submit_service, settings=settings)
        engine.update({
            ContactField.DS_NOME: "Ana",
            ContactField.DS_EMAIL: "ana@empresa",
            ContactField.DS_CARGO: "Gerente",
        })
        assert engine.change(ContactField.DS_TELEFONE, "11987654321").display == "(11) 98765-4321"

        outcome = await engine.submit()
        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert engine.errors == {ContactField.DS_EMAIL.value: "E-mail inválido"}

        engine.change(ContactField.DS_EMAIL, "ana@empresa.com.br")
        outcome = await engine.submit()
        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        payload = submit_service.await_args.args[0]
        assert payload["ds_telefone"] == "11987654321"
        assert payload["fl_ativo"] is True

    @pytest.mark.asyncio
    async def test_user_create_requires_password(self, submit_service, settings):
        engine = FormEngine(build_user_form(), submit_service, settings=settings)
        engine.update({
            UserField.NOME: "Ana",
            UserField.EMAIL: "ana@empresa.com.br",
            UserField.FUNCAO: "Suporte",
            UserField.SENHA: "abc",
        })

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert engine.error(UserField.SENHA) == "Senha deve ter pelo menos 6 caracteres"
        submit_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_user_edit_leaves_password_out(self, submit_service, settings):
        record = {"id": 3, "nome": "Ana", "email": "ana@empresa.com.br", "funcao": "Suporte", "senha": "hash"}
        engine = FormEngine(build_user_form(FormMode.EDIT, record), submit_service, settings=settings)
        assert engine.value(UserField.SENHA) is None

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        assert "senha" not in submit_service.await_args.args[0]

    def test_user_role_catalog(self, submit_service, settings):
        engine = FormEngine(build_user_form(), submit_service, settings=settings)
        assert "Implantador" in engine.options(UserField.FUNCAO)
        assert engine.options(UserField.NOME) == ()

    @pytest.mark.asyncio
    async def test_ticket_form(self, submit_service, settings):
        engine = FormEngine(build_ticket_form(current_user_id=5), submit_service, settings=settings)
        assert engine.value(TicketField.DS_PRIORIDADE) == TicketPriority.MEDIA.value
        engine.update({
            TicketField.DS_TITULO: "Erro ao emitir NF",
            TicketField.DS_CATEGORIA: "Erro de Sistema",
            TicketField.ID_CLIENTE: 2,
        })

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        payload = submit_service.await_args.args[0]
        assert payload["id_solicitante"] == 5
        assert payload["ds_prioridade"] == "media"
        assert "id_atendente" not in payload

    @pytest.mark.asyncio
    async def test_ticket_needs_client(self, submit_service, settings):
        engine = FormEngine(build_ticket_form(current_user_id=5), submit_service, settings=settings)
        engine.update({TicketField.DS_TITULO: "Acesso", TicketField.DS_CATEGORIA: "Acesso"})

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert engine.error(TicketField.ID_CLIENTE) == "Cliente é obrigatório"

    @pytest.mark.asyncio
    async def test_contact_phone_too_short(self, submit_service, settings):
        engine = FormEngine(build_contact_form(), submit_service, settings=settings)
        engine.update({
            ContactField.DS_NOME: "Ana",
            ContactField.DS_EMAIL: "ana@empresa.com.br",
            ContactField.DS_CARGO: "Gerente",
            ContactField.DS_TELEFONE: "119999",
        })

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert engine.errors == {ContactField.DS_TELEFONE.value: "Telefone inválido"}
        submit_service.assert_not_called()
