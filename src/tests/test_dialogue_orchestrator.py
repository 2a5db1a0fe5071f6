import asyncio
import json

import pytest

from medrep_assistant.agents.dialogue_orchestrator import DialogueOrchestrator
from medrep_assistant.agents.function_schema import (
    CREATE_CLINIC_VISIT,
    CREATE_PHARMACY_RESERVATION,
    FUNCTION_DESCRIPTORS,
    GET_DRUG_STOCK,
)
from medrep_assistant.core.error_handling import LLMError, ServiceError
from medrep_assistant.core.messages import (
    CONTEXT_CLEARED_MESSAGE,
    EMPTY_MESSAGE_REPLY,
    GENERIC_FAILURE_MESSAGE,
    LLM_UNAVAILABLE_MESSAGE,
    NO_REPLY_MESSAGE,
    SYSTEM_PROMPT,
)
from medrep_assistant.models.conversation import MessageRole, TurnState


@pytest.fixture
def orchestrator(session_store, fake_llm, lima_functions):
    return DialogueOrchestrator(session_store, fake_llm, lima_functions)


def ask(orchestrator, message, session_id="rep-1"):
    return asyncio.run(orchestrator.process_message(message, session_id))


def test_text_reply_is_returned_and_stored(orchestrator, fake_llm, session_store):
    fake_llm.queue_text("  Здравствуйте! Чем помочь?  ")

    reply = ask(orchestrator, "привет")

    assert reply.success
    assert reply.response == "Здравствуйте! Чем помочь?"
    assert reply.session_id == "rep-1"
    assert reply.function_name is None
    assert reply.turn_state == TurnState.IDLE

    messages = session_store.get("rep-1").messages
    assert [(m.role, m.content) for m in messages] == [
        (MessageRole.USER, "привет"),
        (MessageRole.ASSISTANT, "Здравствуйте! Чем помочь?"),
    ]
    assert fake_llm.requests[0]["functions"] == FUNCTION_DESCRIPTORS


def test_new_session_is_created_when_id_missing(orchestrator, fake_llm, session_store):
    fake_llm.queue_text("Добрый день")

    reply = asyncio.run(orchestrator.process_message("привет"))

    assert reply.session_id
    assert reply.session_id in session_store.active_sessions()


def test_window_holds_system_prompt_and_recent_messages(orchestrator, fake_llm, session_store):
    for index in range(15):
        session_store.append_message("rep-1", MessageRole.USER, f"старое {index}")
    fake_llm.queue_text("ok")

    ask(orchestrator, "новое")

    window = fake_llm.requests[0]["messages"]
    assert len(window) == 10
    assert window[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert window[1]["content"] == "старое 7"
    assert window[-1] == {"role": "user", "content": "новое"}
    assert [message["content"] for message in window].count("новое") == 1


def test_function_call_is_dispatched_and_recorded(orchestrator, fake_llm, session_store):
    arguments = json.dumps({"drugName": "Ибупрофен"}, ensure_ascii=False)
    fake_llm.queue_function(GET_DRUG_STOCK, arguments)

    reply = ask(orchestrator, "Сколько Ибупрофена?")

    assert reply.success
    assert reply.function_name == GET_DRUG_STOCK
    assert "📦 Остаток: 4 упаковок" in reply.response

    messages = session_store.get("rep-1").messages
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.FUNCTION]
    assert messages[1].function_name == GET_DRUG_STOCK
    assert messages[1].function_arguments == arguments
    assert messages[2].content == reply.response

    # the next turn sees the function exchange in wire form
    fake_llm.queue_text("Ещё что-нибудь?")
    ask(orchestrator, "спасибо")
    window = fake_llm.requests[1]["messages"]
    assert window[2]["function_call"] == {"name": GET_DRUG_STOCK, "arguments": arguments}
    assert window[3]["role"] == "function"
    assert window[3]["name"] == GET_DRUG_STOCK


@pytest.mark.parametrize("arguments", [
    "{not json",
    "[1, 2]",
    json.dumps({"drugName": 42}),
    json.dumps({"clinicName": "МедиГранд"}),
])
def test_malformed_arguments_fail_the_turn(orchestrator, fake_llm, session_store, lima_client, arguments):
    name = CREATE_CLINIC_VISIT if "clinicName" in arguments else GET_DRUG_STOCK
    fake_llm.queue_function(name, arguments)

    reply = ask(orchestrator, "сделай что-нибудь")

    assert not reply.success
    assert reply.response == GENERIC_FAILURE_MESSAGE
    assert reply.error_code == "MALFORMED_FUNCTION_ARGUMENTS"
    assert lima_client.calls == []
    assert [m.role for m in session_store.get("rep-1").messages] == [MessageRole.USER]


def test_unknown_function_is_malformed(orchestrator, fake_llm):
    fake_llm.queue_function("deleteEverything", "{}")

    reply = ask(orchestrator, "удали всё")

    assert reply.response == GENERIC_FAILURE_MESSAGE


def test_empty_llm_reply(orchestrator, fake_llm, session_store):
    fake_llm.queue_empty()

    reply = ask(orchestrator, "привет")

    assert not reply.success
    assert reply.response == NO_REPLY_MESSAGE
    assert len(session_store.get("rep-1").messages) == 1


def test_blank_llm_text_counts_as_no_reply(orchestrator, fake_llm):
    fake_llm.queue_text("   ")

    assert ask(orchestrator, "привет").response == NO_REPLY_MESSAGE


def test_llm_failure_keeps_user_message(orchestrator, fake_llm, session_store):
    fake_llm.queue_error(LLMError("timeout"))

    reply = ask(orchestrator, "привет")

    assert not reply.success
    assert reply.response == LLM_UNAVAILABLE_MESSAGE
    assert reply.error_code == "LLM_ERROR"
    assert [m.content for m in session_store.get("rep-1").messages] == ["привет"]


def test_unexpected_failure_is_reported_generically(orchestrator, fake_llm):
    fake_llm.queue_error(RuntimeError("kaboom"))

    reply = ask(orchestrator, "привет")

    assert not reply.success
    assert reply.error_code == "UNKNOWN_ERROR"
    assert "kaboom" not in reply.response


def test_reset_clears_context_without_calling_llm(orchestrator, fake_llm, session_store):
    session_store.append_message("rep-1", MessageRole.USER, "создай визит")
    session_store.set_pending_operation("rep-1", CREATE_CLINIC_VISIT, missing_parameters=["doctorName"])

    reply = ask(orchestrator, "Отмена")

    assert reply.success
    assert reply.context_cleared
    assert reply.response == CONTEXT_CLEARED_MESSAGE
    assert fake_llm.requests == []
    context = session_store.get("rep-1")
    assert context.messages == []
    assert context.pending_operation is None


def test_missing_doctor_is_filled_on_next_turn(orchestrator, fake_llm, session_store, lima_client):
    fake_llm.queue_function(
        CREATE_CLINIC_VISIT,
        json.dumps({"clinicName": "МедиГранд", "discussedDrugs": ["Парацетамол"]}, ensure_ascii=False),
    )

    first = ask(orchestrator, "Был в МедиГранд, рассказал про Парацетамол")

    assert first.success
    assert first.response.startswith("❓")
    assert first.turn_state == TurnState.AWAITING_SLOT_FILL
    assert lima_client.created_visits == []

    fake_llm.queue_function(
        CREATE_CLINIC_VISIT,
        json.dumps({"clinicName": "", "doctorName": "Иванов", "discussedDrugs": []}, ensure_ascii=False),
    )

    second = ask(orchestrator, "С Ивановым")

    assert second.response.startswith("✅ Визит успешно зафиксирован!")
    assert second.turn_state == TurnState.IDLE
    visit = lima_client.created_visits[0]
    assert visit.organization_id == 3
    assert visit.doctor_id == 71
    assert [drug.drug_id for drug in visit.talked_about_drugs] == [1]
    assert session_store.get_pending_operation("rep-1") is None


@pytest.mark.parametrize("message", ["", "   ", None])
def test_blank_message_is_rejected(orchestrator, fake_llm, message):
    reply = ask(orchestrator, message)

    assert not reply.success
    assert reply.error_code == "VALIDATION_ERROR"
    assert reply.response == EMPTY_MESSAGE_REPLY
    assert fake_llm.requests == []


def test_history_window_must_fit_a_message(session_store, fake_llm, lima_functions):
    with pytest.raises(ValueError):
        DialogueOrchestrator(session_store, fake_llm, lima_functions, history_window=1)


def park_clinic_visit(orchestrator, fake_llm):
    fake_llm.queue_function(
        CREATE_CLINIC_VISIT,
        json.dumps({"clinicName": "МедиГранд", "discussedDrugs": ["Парацетамол"]}, ensure_ascii=False),
    )
    reply = ask(orchestrator, "Был в МедиГранд, рассказал про Парацетамол")
    assert reply.turn_state == TurnState.AWAITING_SLOT_FILL


def test_malformed_follow_up_leaves_pending_operation_intact(orchestrator, fake_llm, session_store, lima_client):
    park_clinic_visit(orchestrator, fake_llm)
    fake_llm.queue_function(
        CREATE_CLINIC_VISIT,
        json.dumps({"doctorName": "Иванов", "latitude": "bad"}, ensure_ascii=False),
    )

    broken = ask(orchestrator, "С Ивановым")

    assert broken.error_code == "MALFORMED_FUNCTION_ARGUMENTS"
    pending = session_store.get_pending_operation("rep-1")
    assert pending.parameters == {"clinicName": "МедиГранд", "discussedDrugs": ["Парацетамол"]}
    assert pending.missing_parameters == ["doctorName"]

    fake_llm.queue_function(CREATE_CLINIC_VISIT, json.dumps({"doctorName": "Иванов"}, ensure_ascii=False))

    fixed = ask(orchestrator, "С Ивановым")

    assert fixed.success
    assert fixed.response.startswith("✅ Визит успешно зафиксирован!")
    assert lima_client.created_visits[0].doctor_id == 71
    assert session_store.get_pending_operation("rep-1") is None


def test_crm_failure_keeps_pending_operation(orchestrator, fake_llm, session_store, lima_client):
    park_clinic_visit(orchestrator, fake_llm)
    stored_before = len(session_store.get("rep-1").messages)
    lima_client.fail_with = ServiceError("connection refused", "lima")
    fake_llm.queue_function(CREATE_CLINIC_VISIT, json.dumps({"doctorName": "Иванов"}, ensure_ascii=False))

    failed = ask(orchestrator, "С Ивановым")

    assert not failed.success
    assert failed.error_code == "OPERATION_FAILED"
    assert failed.response.startswith("❌ CRM Lima не ответила при создании визита")
    assert failed.turn_state == TurnState.AWAITING_SLOT_FILL
    pending = session_store.get_pending_operation("rep-1")
    assert pending.operation_type == CREATE_CLINIC_VISIT
    assert pending.parameters["clinicName"] == "МедиГранд"
    assert pending.parameters["discussedDrugs"] == ["Парацетамол"]
    # only the user's own message was added
    messages = session_store.get("rep-1").messages
    assert len(messages) == stored_before + 1
    assert messages[-1].role == MessageRole.USER

    lima_client.fail_with = None
    fake_llm.queue_function(CREATE_CLINIC_VISIT, "{}")

    retried = ask(orchestrator, "Попробуй ещё раз")

    assert retried.success
    visit = lima_client.created_visits[0]
    assert visit.organization_id == 3
    assert visit.doctor_id == 71
    assert session_store.get_pending_operation("rep-1") is None


def test_same_function_intent_overrides_stored_values(orchestrator, fake_llm, session_store, lima_client):
    park_clinic_visit(orchestrator, fake_llm)
    fake_llm.queue_function(
        CREATE_CLINIC_VISIT,
        json.dumps(
            {"clinicName": "Клиника Нурафшон", "doctorName": "Петров", "discussedDrugs": []},
            ensure_ascii=False,
        ),
    )

    reply = ask(orchestrator, "Нет, это было в Клинике Нурафшон, с Петровым")

    assert reply.success
    visit = lima_client.created_visits[0]
    assert visit.organization_id == 2
    assert visit.doctor_id is None
    assert "Петров (не найден в базе)" in reply.response
    # the empty list did not wipe the drugs given earlier
    assert [drug.drug_id for drug in visit.talked_about_drugs] == [1]
    assert session_store.get_pending_operation("rep-1") is None


def test_other_function_intent_replaces_pending_operation(orchestrator, fake_llm, session_store):
    park_clinic_visit(orchestrator, fake_llm)
    fake_llm.queue_function(
        CREATE_PHARMACY_RESERVATION,
        json.dumps({"pharmacyName": "Нурафшон", "drugs": []}, ensure_ascii=False),
    )

    reply = ask(orchestrator, "Лучше оформи бронь в Нурафшон")

    assert reply.response.startswith("❓")
    pending = session_store.get_pending_operation("rep-1")
    assert pending.operation_type == CREATE_PHARMACY_RESERVATION
    assert pending.parameters == {"pharmacyName": "Нурафшон", "drugs": []}
    assert pending.missing_parameters == ["drugs"]
