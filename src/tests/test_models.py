import pytest
from pydantic import ValidationError

from medrep_assistant.agents.function_schema import ARGUMENT_MODELS, FUNCTION_DESCRIPTORS, function_names
from medrep_assistant.core.settings import load_settings
from medrep_assistant.models.conversation import (
    ConversationContext,
    ConversationMessage,
    MessageRole,
    PendingOperation,
)
from medrep_assistant.models.lima import Organization
from medrep_assistant.models.schemas import CreatePharmacyReservationArgs, GetVisitHistoryArgs


def test_every_descriptor_has_an_argument_model():
    assert set(function_names()) == set(ARGUMENT_MODELS)
    assert len(FUNCTION_DESCRIPTORS) == 6


def test_required_descriptor_fields_are_required_by_models():
    for descriptor in FUNCTION_DESCRIPTORS:
        required = descriptor["parameters"].get("required", [])
        model = ARGUMENT_MODELS[descriptor["name"]]
        aliases = {field.alias for field in model.model_fields.values() if field.is_required()}
        assert set(required) == aliases, descriptor["name"]


def test_reservation_arguments_parse_camel_case():
    args = CreatePharmacyReservationArgs.model_validate({
        "pharmacyName": "Нурафшон",
        "drugs": [{"drugName": "Парацетамол", "quantity": 5}],
        "prepaymentPercent": 50,
        "unexpected": True,
    })

    assert args.drugs[0].drug_name == "Парацетамол"
    assert args.to_parameters() == {
        "pharmacyName": "Нурафшон",
        "drugs": [{"drugName": "Парацетамол", "quantity": 5}],
        "prepaymentPercent": 50,
    }


@pytest.mark.parametrize("payload", [
    {"pharmacyName": "Нурафшон", "drugs": [{"drugName": "Парацетамол", "quantity": "5"}]},
    {"pharmacyName": "Нурафшон", "drugs": [{"drugName": "Парацетамол", "quantity": 0}]},
    {"pharmacyName": "Нурафшон", "drugs": [{"drugName": "Парацетамол", "quantity": 1}], "paymentType": "карта"},
    {"drugs": []},
])
def test_reservation_arguments_are_strict(payload):
    with pytest.raises(ValidationError):
        CreatePharmacyReservationArgs.model_validate(payload)


def test_visit_history_page_must_be_positive():
    with pytest.raises(ValidationError):
        GetVisitHistoryArgs.model_validate({"page": 0})


def test_history_is_capped_at_fifty_messages():
    context = ConversationContext(session_id="rep-1")
    for index in range(55):
        context.add_message(ConversationMessage(role=MessageRole.USER, content=str(index)))

    assert len(context.messages) == 50
    assert context.messages[0].content == "5"


def test_pending_operation_merge_ignores_empty_values():
    pending = PendingOperation(
        operation_type="createClinicVisit",
        parameters={"clinicName": "МедиГранд"},
        missing_parameters=["doctorName"],
    )

    pending.merge_parameters({"doctorName": "", "discussedDrugs": []})
    assert not pending.is_complete

    pending.merge_parameters({"doctorName": "Иванов"})
    assert pending.is_complete
    assert pending.parameters == {"clinicName": "МедиГранд", "doctorName": "Иванов"}


def test_function_messages_in_wire_form():
    intent = ConversationMessage(role=MessageRole.ASSISTANT, function_name="getDrugStock", function_arguments='{"drugName": "x"}')
    result = ConversationMessage(role=MessageRole.FUNCTION, content="📦", function_name="getDrugStock")

    assert intent.to_llm_message() == {
        "role": "assistant",
        "content": "",
        "function_call": {"name": "getDrugStock", "arguments": '{"drugName": "x"}'},
    }
    assert result.to_llm_message() == {"role": "function", "content": "📦", "name": "getDrugStock"}


def test_pharmacy_is_detected_by_type_name():
    assert Organization(id=1, type_name="Аптека").is_pharmacy
    assert not Organization(id=2, type_name="ЛПУ").is_pharmacy
    assert not Organization(id=3).is_pharmacy


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("LIMA_API_TOKEN", "token")
    monkeypatch.setenv("LIMA_API_BASE_URL", "https://lima.example/")
    monkeypatch.setenv("HISTORY_WINDOW", "12")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    settings = load_settings()

    assert settings.lima_configured
    assert not settings.openai_configured
    assert settings.lima_api_base_url == "https://lima.example"
    assert settings.history_window == 12
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("name, value", [("HISTORY_WINDOW", "1"), ("HISTORY_WINDOW", "ten"), ("LIMA_API_TIMEOUT", "fast")])
def test_invalid_settings_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        load_settings()
