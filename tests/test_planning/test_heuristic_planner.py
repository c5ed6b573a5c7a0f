from pathlib import Path

import pytest

from parley.history import MODEL, USER, ConversationTurn
from parley.planning import (
    LIST_DIRECTORY,
    RUN_SHELL_COMMAND,
    WRITE_FILE,
    HeuristicPlanner,
    PlanningContext,
)


def plan(utterance: str, history: list[ConversationTurn] | None = None):
    context = PlanningContext(history=history or [], working_dir=Path("/work"))
    return HeuristicPlanner().plan_sync(utterance, context)


def test_golang_hello_world_server_writes_one_go_file():
    result = plan("write a golang hello world server")

    assert [call.name for call in result.tool_calls] == [WRITE_FILE]
    args = result.tool_calls[0].args
    assert args["file_path"].endswith(".go")
    assert "package main" in args["content"]
    assert "Hello World" in args["content"]
    assert result.source == "heuristic"


def test_python_server_and_run_it_is_compound():
    result = plan("write a python server and run it")

    assert [call.name for call in result.tool_calls] == [WRITE_FILE, RUN_SHELL_COMMAND]
    assert result.tool_calls[0].args["file_path"].endswith(".py")
    assert "python3" in result.tool_calls[1].args["command"]


def test_default_language_is_node():
    result = plan("create a hello server")

    assert result.tool_calls[0].args["file_path"] == "server.js"
    assert "http.createServer" in result.tool_calls[0].args["content"]


def test_write_without_run_token_does_not_execute():
    result = plan("write a go server and explain it")

    assert [call.name for call in result.tool_calls] == [WRITE_FILE]


@pytest.mark.parametrize(
    ("history", "expected"),
    [
        ([ConversationTurn.from_text(MODEL, "Created file 'server.go'\n\nok")], "go run server.go"),
        ([ConversationTurn.from_text(MODEL, "Created file 'server.py'\n\nok")], "python3 server.py"),
        ([ConversationTurn.from_text(MODEL, "Created 'server.js' and executed 'node server.js'")], "node server.js"),
        ([ConversationTurn.from_text(USER, "write a golang hello world program")], "go run server.go"),
        ([], "node server.js"),
    ],
)
def test_run_it_resolves_language_from_history(history, expected):
    result = plan("run it", history)

    assert len(result.tool_calls) == 1
    assert result.tool_calls[0].name == RUN_SHELL_COMMAND
    assert result.tool_calls[0].args["command"] == expected


def test_run_it_prefers_most_recent_creation():
    history = [
        ConversationTurn.from_text(USER, "write a python server"),
        ConversationTurn.from_text(MODEL, "Created file 'server.py'"),
        ConversationTurn.from_text(USER, "write a golang server"),
        ConversationTurn.from_text(MODEL, "Created file 'server.go'"),
        ConversationTurn.from_text(USER, "run it"),
    ]

    result = plan("execute", history)

    assert result.tool_calls[0].args["command"] == "go run server.go"


def test_list_files_lists_working_directory():
    result = plan("list files here")

    assert result.tool_calls[0].name == LIST_DIRECTORY
    assert result.tool_calls[0].args == {"path": "."}


@pytest.mark.parametrize("utterance", ["how does this work?", "what is a goroutine", "run the tests please"])
def test_other_utterances_need_no_tools(utterance):
    assert plan(utterance).needs_tools is False
