"""End-to-end tests for FormEngine sessions on the real forms."""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from forms.catalogs import ContractTier
from forms.definitions.client import ClientField, build_client_form
from forms.definitions.service_report import ServiceReportField, build_service_report_form
from forms.derived import ORDERING_MESSAGE
from forms.engine import FormEngine
from forms.enrichment import LookupStatus
from forms.exceptions import FormEngineError, LookupNotFound, UnknownFieldError
from forms.wizard import SubmissionStatus, SubmitOutcomeKind, SubmitResult

C = ClientField
R = ServiceReportField

VALID_CNPJ = "11.222.333/0001-81"


@pytest.fixture
def client_engine(settings, submit_service, cep_lookup):
    definition = build_client_form(lookup=cep_lookup, settings=settings)
    return FormEngine(definition, submit_service, settings=settings)


@pytest.fixture
def rat_engine(settings, submit_service, fixed_now):
    definition = build_service_report_form(current_user_id=7, now=fixed_now, settings=settings)
    return FormEngine(definition, submit_service, settings=settings)


def fill_identification(engine):
    engine.update({
        C.DS_NOME: "ACME",
        C.DS_RAZAO_SOCIAL: "ACME Indústria Ltda",
        C.NR_CNPJ: VALID_CNPJ,
    })


def fill_address_by_hand(engine):
    engine.update({
        C.DS_UF: "SP",
        C.DS_CIDADE: "São Paulo",
        C.DS_BAIRRO: "Sé",
        C.DS_ENDERECO: "Praça da Sé",
        C.NR_NUMERO: "100",
    })


def fill_contract(engine, tier=ContractTier.AVANCADO.value, diary="Não"):
    engine.update({
        C.DS_SITUACAO: "Produção",
        C.DS_SISTEMA: "Manufatura",
        C.DS_CONTRATO: tier,
        C.DS_DIARIO_VIAGEM: diary,
    })


def fill_visit(engine):
    engine.update({
        R.ID_CLIENTE: 3,
        R.ID_CONTATO: 4,
        R.DT_DATA_HORA_ENTRADA: "2024-01-01T10:00",
        R.DT_DATA_HORA_SAIDA: "2024-01-01T12:30",
        R.TX_ATIVIDADES: "Atualização de versão",
    })


class TestFieldEdits:
    """Tests for change() on masked and plain fields."""

    def test_masked_value_is_stored_canonical(self, client_engine):
        result = client_engine.change(C.NR_CNPJ, "11222333000181")
        assert result.applied is True
        assert result.display == VALID_CNPJ
        assert client_engine.value(C.NR_CNPJ) == "11222333000181"

    def test_currency_display_with_symbol(self, client_engine):
        client_engine.change(C.NR_TECNICA_REMOTO, "15000")
        assert client_engine.value(C.NR_TECNICA_REMOTO) == Decimal("150.00")
        assert client_engine.display(C.NR_TECNICA_REMOTO) == "150,00"
        assert client_engine.display(C.NR_TECNICA_REMOTO, with_symbol=True) == "R$ 150,00"

    def test_unknown_field_raises(self, client_engine):
        with pytest.raises(UnknownFieldError):
            client_engine.change("ds_telefone", "123")
        with pytest.raises(KeyError):
            client_engine.value("ds_telefone")

    def test_editing_a_field_clears_only_its_error(self, client_engine):
        assert client_engine.next_step() is False
        assert set(client_engine.errors) == {C.DS_NOME.value, C.DS_RAZAO_SOCIAL.value, C.NR_CNPJ.value}

        client_engine.change(C.DS_NOME, "ACME")

        assert client_engine.error(C.DS_NOME) is None
        assert client_engine.error(C.NR_CNPJ) == "CNPJ é obrigatório"

    def test_defaults_are_applied(self, client_engine):
        assert client_engine.value(C.FL_MATRIZ) is True
        assert client_engine.current_step.id == "identificacao"


class TestClientDependencies:
    """Tests for seat and travel-diary rules on the client form."""

    def test_seats_follow_contract_tier(self, client_engine):
        client_engine.change(C.DS_CONTRATO, ContractTier.BASICO_COM_SUPORTE.value)
        assert client_engine.is_enabled(C.NR_NOMEADOS)
        client_engine.change(C.NR_NOMEADOS, "5")

        client_engine.change(C.DS_CONTRATO, ContractTier.AVANCADO.value)

        assert client_engine.value(C.NR_NOMEADOS) is None
        assert not client_engine.is_enabled(C.NR_NOMEADOS)
        assert client_engine.change(C.NR_NOMEADOS, "3").applied is False
        assert client_engine.value(C.NR_NOMEADOS) is None

    def test_travel_diary_requires_region(self, client_engine):
        assert not client_engine.is_enabled(C.DS_REGIAO)

        client_engine.change(C.DS_DIARIO_VIAGEM, "Sim")

        assert client_engine.is_enabled(C.DS_REGIAO)
        assert client_engine.is_required(C.DS_REGIAO)
        assert client_engine.is_enabled(C.NR_DISTANCIA_KM)
        assert not client_engine.is_required(C.NR_DISTANCIA_KM)

    def test_turning_diary_off_clears_pricing(self, client_engine):
        client_engine.change(C.DS_DIARIO_VIAGEM, "Sim")
        client_engine.update({C.DS_REGIAO: "Capital", C.NR_TECNICA_PRESENCIAL: "20000"})

        client_engine.change(C.DS_DIARIO_VIAGEM, "Não")

        assert client_engine.value(C.DS_REGIAO) is None
        assert client_engine.value(C.NR_TECNICA_PRESENCIAL) is None
        assert not client_engine.is_required(C.DS_REGIAO)


class TestWizardFlow:
    """Tests for step navigation through the engine."""

    def test_valid_step_advances(self, client_engine):
        events = []
        client_engine.on_step_changed(events.append)
        fill_identification(client_engine)

        assert client_engine.next_step() is True
        assert client_engine.current_step.id == "endereco"
        assert client_engine.errors == {}
        assert [e.current for e in events] == ["endereco"]

    def test_later_steps_are_not_validated(self, client_engine):
        fill_identification(client_engine)
        client_engine.next_step()
        assert client_engine.next_step() is False
        assert C.DS_CEP.value in client_engine.errors
        assert C.DS_SITUACAO.value not in client_engine.errors

    def test_back_keeps_values_without_validating(self, client_engine):
        fill_identification(client_engine)
        client_engine.next_step()

        assert client_engine.previous_step() is True
        assert client_engine.current_step.id == "identificacao"
        assert client_engine.value(C.DS_NOME) == "ACME"
        assert client_engine.errors == {}

    @pytest.mark.asyncio
    async def test_submit_from_first_step_never_calls_service(self, client_engine, submit_service):
        fill_identification(client_engine)
        fill_address_by_hand(client_engine)
        fill_contract(client_engine)

        outcome = await client_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.NOT_TERMINAL
        submit_service.assert_not_called()
        assert client_engine.current_step.id == "identificacao"
        client_engine.close()

    def test_progress_and_export(self, client_engine):
        fill_identification(client_engine)
        client_engine.next_step()

        progress = client_engine.progress()
        exported = client_engine.export_state()

        assert progress["current_step"] == "endereco"
        assert exported["form"] == "client"
        assert exported["current_step"] == "endereco"
        assert exported["display"][C.NR_CNPJ.value] == VALID_CNPJ
        assert exported["values"][C.NR_CNPJ.value] == "11222333000181"
        assert exported["lookups"] == {C.DS_CEP.value: "idle"}
        assert exported["submission_status"] == "idle"


class TestClientSubmission:
    """Tests for submitting the client form."""

    @pytest.mark.asyncio
    async def test_full_client_flow(self, client_engine, submit_service):
        fill_identification(client_engine)
        assert client_engine.next_step()

        client_engine.change(C.DS_CEP, "01001-000")
        await client_engine.wait_for_lookups()
        client_engine.change(C.NR_NUMERO, "100")
        assert client_engine.next_step()

        fill_contract(client_engine)
        outcome = await client_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        submit_service.assert_awaited_once()
        payload = submit_service.await_args.args[0]
        assert payload["nr_cnpj"] == "11222333000181"
        assert payload["ds_cep"] == "01001000"
        assert payload["ds_endereco"] == "Praça da Sé"
        assert payload["nr_codigo_ibge"] == "3550308"
        assert "nr_nomeados" not in payload
        assert "ds_regiao" not in payload
        assert client_engine.closed
        assert client_engine.submission_status == SubmissionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_missing_region_is_reported_on_submit(self, client_engine, submit_service):
        fill_identification(client_engine)
        client_engine.next_step()
        client_engine.change(C.DS_CEP, "01001000")
        await client_engine.wait_for_lookups()
        client_engine.change(C.NR_NUMERO, "100")
        client_engine.next_step()
        fill_contract(client_engine, diary="Sim")

        outcome = await client_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert client_engine.error(C.DS_REGIAO) == "Região é obrigatória quando há diário de viagem"
        submit_service.assert_not_called()
        assert not client_engine.closed

    @pytest.mark.asyncio
    async def test_submit_errors_survive_going_back_and_editing(self, client_engine, submit_service):
        fill_identification(client_engine)
        client_engine.next_step()
        client_engine.change(C.DS_CEP, "01001000")
        await client_engine.wait_for_lookups()
        client_engine.change(C.NR_NUMERO, "100")
        client_engine.next_step()
        fill_contract(client_engine, diary="Sim")
        outcome = await client_engine.submit()
        assert outcome.kind == SubmitOutcomeKind.INVALID
        reported = dict(client_engine.errors)

        assert client_engine.previous_step() is True
        assert client_engine.current_step.id == "endereco"
        client_engine.change(C.NR_NUMERO, "200")

        assert client_engine.error(C.DS_REGIAO) == "Região é obrigatória quando há diário de viagem"
        assert client_engine.errors == reported
        submit_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_submission_keeps_session_open(self, settings):
        service = AsyncMock(return_value=SubmitResult.error("CNPJ já cadastrado"))
        engine = FormEngine(build_client_form(settings=settings), service, settings=settings)
        fill_identification(engine)
        engine.next_step()
        engine.change(C.DS_CEP, "01001000")
        fill_address_by_hand(engine)
        engine.next_step()
        fill_contract(engine)

        outcome = await engine.submit()

        assert outcome.kind == SubmitOutcomeKind.FAILED
        assert engine.notification == "CNPJ já cadastrado"
        assert engine.errors == {}
        assert not engine.closed

    @pytest.mark.asyncio
    async def test_closed_session_refuses_edits(self, client_engine):
        client_engine.close()
        with pytest.raises(FormEngineError):
            client_engine.change(C.DS_NOME, "ACME")
        with pytest.raises(FormEngineError):
            await client_engine.submit()


class TestPostalCodeLookup:
    """Tests for CEP autofill through the engine."""

    @pytest.mark.asyncio
    async def test_complete_cep_fills_address(self, client_engine, cep_lookup):
        client_engine.change(C.DS_CEP, "01001-000")
        assert client_engine.lookup_busy

        await client_engine.wait_for_lookups()

        cep_lookup.assert_awaited_once_with("01001000")
        assert client_engine.value(C.DS_ENDERECO) == "Praça da Sé"
        assert client_engine.value(C.DS_BAIRRO) == "Sé"
        assert client_engine.value(C.DS_CIDADE) == "São Paulo"
        assert client_engine.value(C.DS_UF) == "SP"
        assert client_engine.lookup_state(C.DS_CEP).status == LookupStatus.SUCCEEDED
        assert not client_engine.lookup_busy

    @pytest.mark.asyncio
    async def test_incomplete_cep_does_not_fetch(self, client_engine, cep_lookup):
        client_engine.change(C.DS_CEP, "01001-00")
        await client_engine.wait_for_lookups()
        cep_lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_edits_within_debounce_fire_one_lookup(self, client_engine, cep_lookup):
        client_engine.change(C.DS_CEP, "01001000")
        client_engine.change(C.DS_CEP, "01310100")
        await client_engine.wait_for_lookups()
        cep_lookup.assert_awaited_once_with("01310100")

    @pytest.mark.asyncio
    async def test_same_cep_typed_again_does_not_refetch(self, client_engine, cep_lookup):
        client_engine.change(C.DS_CEP, "01001000")
        await client_engine.wait_for_lookups()
        client_engine.change(C.DS_CEP, "01001-000")
        await client_engine.wait_for_lookups()
        assert cep_lookup.await_count == 1

    @pytest.mark.asyncio
    async def test_user_typed_street_survives_lookup(self, settings, submit_service):
        lookup = AsyncMock(return_value={"logradouro": "Rua Y", "bairro": "Centro", "uf": "SP"})
        engine = FormEngine(build_client_form(lookup=lookup, settings=settings), submit_service, settings=settings)
        engine.change(C.DS_ENDERECO, "Rua X")

        engine.change(C.DS_CEP, "01001000")
        await engine.wait_for_lookups()

        assert engine.value(C.DS_ENDERECO) == "Rua X"
        assert engine.value(C.DS_BAIRRO) == "Centro"

    @pytest.mark.asyncio
    async def test_filled_fields_lose_their_errors(self, client_engine):
        fill_identification(client_engine)
        client_engine.next_step()
        assert client_engine.next_step() is False
        assert client_engine.error(C.DS_ENDERECO) is not None

        client_engine.change(C.DS_CEP, "01001000")
        await client_engine.wait_for_lookups()

        assert client_engine.error(C.DS_CEP) is None
        assert client_engine.error(C.DS_ENDERECO) is None
        assert client_engine.error(C.DS_UF) is None
        assert client_engine.error(C.NR_NUMERO) == "Número é obrigatório"

    @pytest.mark.asyncio
    async def test_unknown_cep_leaves_form_editable(self, settings, submit_service):
        lookup = AsyncMock(side_effect=LookupNotFound("99999999"))
        engine = FormEngine(build_client_form(lookup=lookup, settings=settings), submit_service, settings=settings)
        fill_identification(engine)
        engine.next_step()

        engine.change(C.DS_CEP, "99999999")
        await engine.wait_for_lookups()
        assert engine.lookup_state(C.DS_CEP).status == LookupStatus.NOT_FOUND

        fill_address_by_hand(engine)
        assert engine.next_step() is True

    @pytest.mark.asyncio
    async def test_lookup_failure_is_logged_not_raised(self, settings, submit_service, caplog):
        lookup = AsyncMock(side_effect=ConnectionError("timeout"))
        engine = FormEngine(build_client_form(lookup=lookup, settings=settings), submit_service, settings=settings)

        with caplog.at_level(logging.WARNING, logger="forms.enrichment"):
            engine.change(C.DS_CEP, "01001000")
            await engine.wait_for_lookups()

        assert engine.lookup_state(C.DS_CEP).status == LookupStatus.FAILED
        assert engine.value(C.DS_ENDERECO) is None

    @pytest.mark.asyncio
    async def test_close_discards_pending_lookup(self, client_engine, cep_lookup):
        client_engine.change(C.DS_CEP, "01001000")
        client_engine.close()
        await asyncio.sleep(0.05)

        cep_lookup.assert_not_called()
        assert client_engine.value(C.DS_ENDERECO) is None


class TestServiceReportDerivedFields:
    """Tests for RAT duration and distance."""

    def test_initial_duration_is_zero(self, rat_engine):
        assert rat_engine.value(R.TM_DURACAO) == "00:00:00"
        assert rat_engine.value(R.ID_USUARIO) == 7
        assert rat_engine.value(R.DT_DATA_HORA_ENTRADA) == "2024-01-01T09:00"

    def test_duration_follows_timestamps(self, rat_engine):
        rat_engine.change(R.DT_DATA_HORA_ENTRADA, "2024-01-01T10:00")
        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T12:30")
        assert rat_engine.value(R.TM_DURACAO) == "02:30:00"

    def test_exit_before_entry_flags_exit_and_keeps_duration(self, rat_engine):
        rat_engine.change(R.DT_DATA_HORA_ENTRADA, "2024-01-01T10:00")
        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T12:30")

        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T09:00")

        assert rat_engine.value(R.TM_DURACAO) == "02:30:00"
        assert rat_engine.error(R.DT_DATA_HORA_SAIDA) == ORDERING_MESSAGE

    def test_fixing_entry_resolves_ordering_error(self, rat_engine):
        rat_engine.change(R.DT_DATA_HORA_ENTRADA, "2024-01-01T10:00")
        assert rat_engine.error(R.DT_DATA_HORA_SAIDA) == ORDERING_MESSAGE

        rat_engine.change(R.DT_DATA_HORA_ENTRADA, "2024-01-01T08:00")

        assert rat_engine.error(R.DT_DATA_HORA_SAIDA) is None
        assert rat_engine.value(R.TM_DURACAO) == "01:00:00"

    def test_manual_duration_survives_until_timestamps_change(self, rat_engine):
        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T11:00")
        assert rat_engine.change(R.TM_DURACAO, "03:00").applied is True
        assert rat_engine.value(R.TM_DURACAO) == "03:00"

        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T10:00")
        assert rat_engine.value(R.TM_DURACAO) == "01:00:00"

    def test_malformed_duration_is_refused(self, rat_engine):
        result = rat_engine.change(R.TM_DURACAO, "3h")
        assert result.applied is False
        assert rat_engine.value(R.TM_DURACAO) == "00:00:00"

    def test_derived_total_is_read_only(self, rat_engine):
        assert rat_engine.change(R.TOTAL_KM, "999").applied is False
        assert rat_engine.value(R.TOTAL_KM) is None


class TestServiceReportTravel:
    """Tests for the remote/on-site switch."""

    def test_remote_visit_locks_odometer(self, rat_engine):
        assert rat_engine.value(R.FL_DESLOCAMENTO) == "R"
        for name in (R.NR_KM_IDA, R.NR_KM_VOLTA, R.NR_VALOR_PEDAGIO):
            assert not rat_engine.is_enabled(name)
            assert rat_engine.value(name) is None

    def test_on_site_visit_enables_and_requires_empty_fields(self, rat_engine):
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        for name in (R.NR_KM_IDA, R.NR_KM_VOLTA, R.NR_VALOR_PEDAGIO):
            assert rat_engine.is_enabled(name)
            assert rat_engine.is_required(name)
            assert rat_engine.value(name) is None

    def test_distance_total_and_switch_back_to_remote(self, rat_engine):
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        rat_engine.update({R.NR_KM_IDA: "100", R.NR_KM_VOLTA: "150", R.NR_VALOR_PEDAGIO: "1240"})
        assert rat_engine.value(R.TOTAL_KM) == Decimal("50")

        rat_engine.change(R.FL_DESLOCAMENTO, "R")

        assert rat_engine.value(R.NR_KM_IDA) is None
        assert rat_engine.value(R.NR_KM_VOLTA) is None
        assert rat_engine.value(R.NR_VALOR_PEDAGIO) is None
        assert rat_engine.value(R.TOTAL_KM) is None
        assert not rat_engine.is_enabled(R.NR_KM_IDA)

    def test_readings_accept_decimal_comma(self, rat_engine):
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        rat_engine.update({R.NR_KM_IDA: "100,5", R.NR_KM_VOLTA: "150"})
        assert rat_engine.value(R.TOTAL_KM) == Decimal("49.5")

    def test_travel_cost_with_configured_rate(self, submit_service, fixed_now):
        from config.settings import FormEngineSettings

        settings = FormEngineSettings(travel_km_rate=Decimal("2"), _env_file=None)
        engine = FormEngine(
            build_service_report_form(now=fixed_now, settings=settings), submit_service, settings=settings
        )
        engine.change(R.FL_DESLOCAMENTO, "P")
        engine.update({R.NR_KM_IDA: "0", R.NR_KM_VOLTA: "100", R.NR_VALOR_PEDAGIO: "1240"})

        assert engine.value(R.NR_VALOR_DESLOCAMENTO) == Decimal("212.40")
        assert engine.display(R.NR_VALOR_DESLOCAMENTO, with_symbol=True) == "R$ 212,40"


class TestServiceReportSubmission:
    """Tests for submitting a RAT."""

    @pytest.mark.asyncio
    async def test_on_site_visit_needs_toll(self, rat_engine, submit_service):
        fill_visit(rat_engine)
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        rat_engine.update({R.NR_KM_IDA: "100", R.NR_KM_VOLTA: "150"})

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert rat_engine.errors == {
            R.NR_VALOR_PEDAGIO.value: "Pedágio é obrigatório quando há deslocamento"
        }
        submit_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_misordered_visit_is_not_submitted(self, rat_engine, submit_service):
        fill_visit(rat_engine)
        rat_engine.change(R.DT_DATA_HORA_SAIDA, "2024-01-01T09:00")

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert rat_engine.error(R.DT_DATA_HORA_SAIDA) == ORDERING_MESSAGE
        submit_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_unselected_client_is_required(self, rat_engine, submit_service):
        fill_visit(rat_engine)
        rat_engine.change(R.ID_CLIENTE, 0)

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.INVALID
        assert rat_engine.error(R.ID_CLIENTE) == "Cliente é obrigatório"

    @pytest.mark.asyncio
    async def test_on_site_visit_is_submitted(self, rat_engine, submit_service):
        fill_visit(rat_engine)
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        rat_engine.update({R.NR_KM_IDA: "100", R.NR_KM_VOLTA: "150", R.NR_VALOR_PEDAGIO: "1240"})

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        payload = submit_service.await_args.args[0]
        assert payload["id_usuario"] == 7
        assert payload["tm_duracao"] == "02:30:00"
        assert payload["nr_km_ida"] == Decimal("100")
        assert payload["nr_valor_pedagio"] == Decimal("12.40")
        assert "total_km" not in payload
        assert rat_engine.closed

    @pytest.mark.asyncio
    async def test_reading_with_decimal_comma_is_submitted_as_number(self, rat_engine, submit_service):
        fill_visit(rat_engine)
        rat_engine.change(R.FL_DESLOCAMENTO, "P")
        rat_engine.update({R.NR_KM_IDA: "100,5", R.NR_KM_VOLTA: "150", R.NR_VALOR_PEDAGIO: "1240"})

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        payload = submit_service.await_args.args[0]
        assert payload["nr_km_ida"] == Decimal("100.5")
        assert payload["nr_km_volta"] == Decimal("150")

    @pytest.mark.asyncio
    async def test_remote_visit_omits_odometer(self, rat_engine, submit_service):
        fill_visit(rat_engine)

        outcome = await rat_engine.submit()

        assert outcome.kind == SubmitOutcomeKind.SUBMITTED
        payload = submit_service.await_args.args[0]
        assert payload["fl_deslocamento"] == "R"
        assert "nr_km_ida" not in payload
