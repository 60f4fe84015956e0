# tests/unit/test_engine.py

import pytest
from unittest.mock import MagicMock

from chatbotflex.config import strings
from chatbotflex.models.flow import ConversationContext
from chatbotflex.workflows.engine import process_message


def trigger(node_id="t1", trigger_type="any", keywords=None):
    return {"id": node_id, "type": "trigger", "data": {"triggerType": trigger_type, "keywords": keywords or []}}


def message(node_id, content):
    return {"id": node_id, "type": "message", "data": {"label": content}}


def edge(source, target, label=None):
    data = {"id": f"{source}-{target}", "source": source, "target": target}
    if label is not None:
        data["label"] = label
    return data


@pytest.fixture
def fresh():
    return ConversationContext()


@pytest.fixture
def returning():
    """A conversation sent back to the initial stage after earlier turns."""
    return ConversationContext(stage="initial", last_intent="welcome")


# --- Initial turn ---

def test_first_turn_chains_two_messages(build_graph, fresh):
    graph = build_graph(
        [trigger(), message("m1", "Hi"), message("m2", "How can I help?")],
        [edge("t1", "m1"), edge("m1", "m2")],
    )
    result = process_message(graph, "hello", fresh)

    assert result.message == "Hi\n\nHow can I help?"
    assert result.context.stage == "m2"
    assert result.context.last_intent == "welcome"
    assert result.transfer_to_human is False


def test_chaining_stops_after_one_level(build_graph, fresh):
    graph = build_graph(
        [trigger(), message("m1", "A"), message("m2", "B"), message("m3", "C")],
        [edge("t1", "m1"), edge("m1", "m2"), edge("m2", "m3")],
    )
    result = process_message(graph, "oi", fresh)

    assert result.message == "A\n\nB"
    assert result.context.stage == "m3"


def test_first_message_fires_keyword_trigger_unconditionally(build_graph, fresh):
    graph = build_graph([trigger(trigger_type="keyword", keywords=["oi"]), message("m1", "Bem-vindo!")], [edge("t1", "m1")])
    result = process_message(graph, "bom dia", fresh)

    assert result.message == "Bem-vindo!"


def test_keyword_trigger_gates_a_returning_conversation(build_graph, returning):
    graph = build_graph([trigger(trigger_type="keyword", keywords=["menu"]), message("m1", "Menu")], [edge("t1", "m1")])

    ignored = process_message(graph, "hello", returning)
    assert ignored.message is None
    assert ignored.context == returning

    fired = process_message(graph, "Quero ver o MENU", returning)
    assert fired.message == "Menu"
    assert fired.context.stage == "m1"
    assert fired.context.last_intent == "welcome"


def test_trigger_without_keywords_always_fires(build_graph, returning):
    graph = build_graph([trigger(trigger_type="keyword"), message("m1", "Olá")], [edge("t1", "m1")])
    assert process_message(graph, "qualquer coisa", returning).message == "Olá"


def test_legacy_flow_trigger_gates_graph_without_trigger_node(build_graph, returning):
    graph = build_graph([message("m1", "Olá")], trigger={"type": "keyword", "value": "oi,ola"})

    assert process_message(graph, "bom dia", returning).message is None
    assert process_message(graph, "oi tudo bem", returning).message == "Olá"


def test_graph_without_trigger_starts_at_first_node(build_graph, fresh):
    graph = build_graph([message("m1", "Primeiro"), message("m2", "Segundo")], [edge("m1", "m2")])
    result = process_message(graph, "oi", fresh)

    assert result.message == "Primeiro\n\nSegundo"


def test_no_active_flow_returns_configuration_error(fresh):
    result = process_message(None, "oi", fresh)

    assert result.message == strings.CONFIG_ERROR
    assert result.context == fresh


def test_empty_graph_returns_configuration_error(build_graph, fresh):
    result = process_message(build_graph([]), "oi", fresh)
    assert result.message == strings.CONFIG_ERROR


def test_trigger_without_edge_returns_configuration_error(build_graph, fresh, caplog):
    graph = build_graph([trigger(), message("m1", "Hi")])

    with caplog.at_level("CRITICAL"):
        result = process_message(graph, "oi", fresh)

    assert result.message == strings.CONFIG_ERROR
    assert result.context == fresh
    assert any(record.levelname == "CRITICAL" for record in caplog.records)


def test_trigger_edge_to_missing_node_returns_configuration_error(build_graph, fresh):
    graph = build_graph([trigger(), message("m1", "Hi")], [edge("t1", "ghost")])
    result = process_message(graph, "oi", fresh)

    assert result.message == strings.CONFIG_ERROR
    assert result.context == fresh


# --- Message nodes ---

def test_dangling_edge_keeps_conversation_on_the_message(build_graph):
    graph = build_graph([message("m1", "Ainda aqui")], [edge("m1", "ghost")])
    context = ConversationContext(stage="m1", last_intent="welcome")

    result = process_message(graph, "oi", context)

    assert result.message == "Ainda aqui"
    assert result.context.stage == "m1"


def test_message_followed_by_input_moves_stage_without_extra_text(build_graph):
    graph = build_graph(
        [message("m1", "Vamos começar"), {"id": "i1", "type": "input", "data": {"content": "Seu nome?"}}],
        [edge("m1", "i1")],
    )
    result = process_message(graph, "ok", ConversationContext(stage="m1", last_intent="welcome"))

    assert result.message == "Vamos começar"
    assert result.context.stage == "i1"


def test_unknown_stage_falls_back_to_main_menu(build_graph):
    graph = build_graph([message("m1", "Oi")])
    result = process_message(graph, "oi", ConversationContext(stage="removed-node", last_intent="welcome"))

    assert result.message == strings.NOT_UNDERSTOOD
    assert result.context.stage == "main_menu"


# --- Input nodes ---

def name_capture_graph(build_graph):
    return build_graph(
        [
            {"id": "i1", "type": "input", "data": {"content": "Qual seu nome?", "variableName": "nome"}},
            message("m1", "Olá {nome}!"),
        ],
        [edge("i1", "m1")],
    )


def test_captured_variable_is_substituted_in_next_message(build_graph):
    graph = name_capture_graph(build_graph)
    context = ConversationContext(stage="i1", last_intent="welcome")

    result = process_message(graph, "Maria", context)

    assert result.message == "Olá Maria!"
    assert result.context.user_data == {"nome": "Maria"}
    assert result.context.stage == "m1"
    assert context.user_data == {}


def test_substitution_is_case_insensitive(build_graph):
    graph = build_graph([message("m1", "Oi {NOME}, tudo bem {nome}?")])
    context = ConversationContext(stage="m1", user_data={"nome": "Ana"})

    assert process_message(graph, "x", context).message == "Oi Ana, tudo bem Ana?"


def test_invalid_email_reprompts_without_advancing(build_graph):
    graph = build_graph(
        [{"id": "i1", "type": "input", "data": {"content": "Seu e-mail?", "validation": "email", "label": "Email"}}, message("m1", "Obrigado")],
        [edge("i1", "m1")],
    )
    context = ConversationContext(stage="i1", last_intent="welcome")

    rejected = process_message(graph, "not-an-email", context)
    assert rejected.message == strings.INVALID_INPUT["email"]
    assert rejected.context == context

    accepted = process_message(graph, "a@b.com", context)
    assert accepted.context.stage == "m1"
    assert accepted.context.user_data == {"email": "a@b.com"}


@pytest.mark.parametrize("validation, bad, good", [
    ("phone", "1234", "(11) 98765-4321"),
    ("number", "abc", "42.5"),
    ("text", "   ", "qualquer"),
])
def test_input_validation_kinds(build_graph, validation, bad, good):
    graph = build_graph([{"id": "i1", "type": "input", "data": {"validation": validation, "variableName": "v"}}])
    context = ConversationContext(stage="i1")

    assert process_message(graph, bad, context).context == context
    assert process_message(graph, good, context).context.user_data == {"v": good.strip()}


def test_input_without_next_node_thanks_and_keeps_stage(build_graph):
    graph = build_graph([{"id": "i1", "type": "input", "data": {"label": "Telefone"}}])
    result = process_message(graph, "11987654321", ConversationContext(stage="i1"))

    assert result.message == strings.INPUT_THANKS
    assert result.context.stage == "i1"
    assert result.context.user_data == {"telefone": "11987654321"}


def test_input_prompt_falls_back_to_label(build_graph, fresh):
    graph = build_graph([trigger(), {"id": "i1", "type": "input", "data": {"label": "Seu Nome"}}], [edge("t1", "i1")])
    result = process_message(graph, "oi", fresh)

    assert result.message == strings.INPUT_PROMPT_LABEL.format(label="seu nome")
    assert result.context.stage == "i1"


# --- Condition nodes ---

def condition_graph(build_graph):
    return build_graph(
        [
            {"id": "c1", "type": "condition", "data": {"label": "Deseja continuar?", "conditions": ["Sim", "Não"]}},
            message("yes", "Ótimo!"),
            message("no", "Tudo bem."),
        ],
        [edge("c1", "yes", "Sim"), edge("c1", "no", "Não")],
    )


def test_condition_follows_labeled_edge(build_graph):
    context = ConversationContext(stage="c1", last_intent="welcome")
    result = process_message(condition_graph(build_graph), " Sim ", context)

    assert result.message == "Ótimo!"
    assert result.context.stage == "yes"
    assert result.context.last_intent == "Sim"


def test_condition_rejects_unknown_choice(build_graph):
    context = ConversationContext(stage="c1", last_intent="welcome")
    result = process_message(condition_graph(build_graph), "talvez", context)

    assert result.message == f"{strings.INVALID_OPTION}\n\n• Sim\n• Não"
    assert result.context == context


def test_condition_choice_without_edge_is_misconfigured(build_graph):
    graph = build_graph(
        [{"id": "c1", "type": "condition", "data": {"conditions": ["A", "B"]}}, message("a", "A!")],
        [edge("c1", "a", "A")],
    )
    context = ConversationContext(stage="c1")
    result = process_message(graph, "B", context)

    assert result.message == strings.MISCONFIGURED_OPTION
    assert result.context == context


def test_entering_condition_lists_its_options(build_graph, fresh):
    graph = build_graph(
        [trigger(), {"id": "c1", "type": "condition", "data": {"label": "Deseja continuar?", "conditions": ["Sim", "Não"]}}],
        [edge("t1", "c1")],
    )
    result = process_message(graph, "oi", fresh)

    assert result.message == "Deseja continuar?\n\n• Sim\n• Não"
    assert result.context.stage == "c1"


# --- Transfer and end ---

def test_transfer_is_terminal_and_signals_handoff(build_graph, fresh):
    graph = build_graph(
        [trigger(), {"id": "x1", "type": "transfer", "data": {"label": "Chamando vendas...", "department": "Vendas"}}],
        [edge("t1", "x1")],
    )
    result = process_message(graph, "oi", fresh)

    assert result.message == "Chamando vendas..."
    assert result.transfer_to_human is True
    assert result.department == "Vendas"
    assert result.context.stage == "transfer"


def test_transfer_defaults(build_graph):
    graph = build_graph([{"id": "x1", "type": "transfer"}])
    result = process_message(graph, "oi", ConversationContext(stage="x1"))

    assert result.message == strings.TRANSFER_DEFAULT
    assert result.department == "Geral"


def test_end_node_ends_conversation(build_graph):
    graph = build_graph([message("m1", "Até logo"), {"id": "e1", "type": "end", "content": "Tchau, {nome}!"}], [edge("m1", "e1")])
    result = process_message(graph, "ok", ConversationContext(stage="e1", user_data={"nome": "Rui"}))

    assert result.message == "Tchau, Rui!"
    assert result.end_conversation is True


def test_unknown_node_type_is_treated_as_end(build_graph):
    graph = build_graph([{"id": "w1", "type": "webhook", "content": "Fim"}])
    result = process_message(graph, "oi", ConversationContext(stage="w1"))

    assert result.end_conversation is True
    assert result.message == "Fim"


def test_trigger_reached_mid_conversation_passes_through(build_graph):
    graph = build_graph([trigger(), message("m1", "Olá de novo")], [edge("t1", "m1")])
    result = process_message(graph, "x", ConversationContext(stage="t1", last_intent="welcome"))

    assert result.message == "Olá de novo"


# --- Legacy menu and question nodes ---

def menu_graph(build_graph, next_node=None):
    node = {"id": "menu", "type": "menu", "content": "1 - Horários\n2 - Planos", "options": ["Horários", "Planos", "Aula", "Atendente", "Modalidades"]}
    if next_node:
        node["nextNode"] = next_node
    return build_graph([node, message("m1", "Você escolheu {lastChoice}")])


def test_legacy_menu_uses_canned_replies(build_graph):
    context = ConversationContext(stage="menu")
    result = process_message(menu_graph(build_graph), "4", context)

    assert result.message == strings.TRANSFER_DEFAULT
    assert result.transfer_to_human is True
    assert result.department == "Geral"
    assert result.context.stage == "transfer"
    assert result.context.user_data["lastChoice"] == "Atendente"


def test_legacy_menu_follows_explicit_next_node(build_graph):
    result = process_message(menu_graph(build_graph, next_node="m1"), "2", ConversationContext(stage="menu"))

    assert result.message == "Você escolheu Planos"


def test_legacy_menu_rejects_out_of_range_choice(build_graph):
    context = ConversationContext(stage="menu")
    result = process_message(menu_graph(build_graph), "9", context)

    assert result.message == f"{strings.INVALID_OPTION}\n\n1 - Horários\n2 - Planos"
    assert result.context == context


def test_legacy_question_stores_reply_under_node_id(build_graph):
    graph = build_graph([{"id": "q1", "type": "question", "content": "Qual seu objetivo?"}])
    result = process_message(graph, "Emagrecer", ConversationContext(stage="q1"))

    assert result.context.user_data == {"q1": "Emagrecer"}
    assert result.message == strings.INPUT_THANKS


# --- Failure containment ---

def test_unexpected_error_returns_apology_with_original_context():
    graph = MagicMock()
    graph.entry_node.side_effect = RuntimeError("boom")
    context = ConversationContext()

    result = process_message(graph, "oi", context)

    assert result.message == strings.DEFAULT_APOLOGY
    assert result.context == context
