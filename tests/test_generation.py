from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from taskmill.config import GenerationConfig
from taskmill.errors import GenerationError
from taskmill.generation import (
    CommandStrategy,
    FallbackChain,
    GenerationRequest,
    build_chain,
    role_order,
)


def _proc(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.stdout = stdout
    proc.stderr = stderr
    return proc


def test_command_strategy_pipes_prompt_on_stdin() -> None:
    strategy = CommandStrategy("main", ["llm", "-m", "big"])
    request = GenerationRequest(role="main", prompt="hello", schema={"type": "object"})

    with patch("taskmill.generation.subprocess.run", return_value=_proc(stdout='{"a": 1}')) as run:
        result = strategy.generate(request)

    assert run.call_args.args[0] == ["llm", "-m", "big"]
    assert run.call_args.kwargs["input"] == "hello"
    assert result.strategy == "main:llm"
    assert result.text == '{"a": 1}'
    assert result.data == {"a": 1}


def test_command_strategy_leaves_data_empty_for_prose() -> None:
    strategy = CommandStrategy("main", ["llm"])
    request = GenerationRequest(role="main", prompt="p", schema={"type": "object"})

    with patch("taskmill.generation.subprocess.run", return_value=_proc(stdout="not json")):
        result = strategy.generate(request)

    assert result.data is None
    assert result.text == "not json"


@pytest.mark.parametrize(
    ("side_effect", "message"),
    [
        (FileNotFoundError(), "command not found"),
        (subprocess.TimeoutExpired(cmd="llm", timeout=1), "timed out"),
        (None, "exited with code 2: boom"),
    ],
)
def test_command_strategy_failures(side_effect: object, message: str) -> None:
    strategy = CommandStrategy("main", ["llm"])
    request = GenerationRequest(role="main", prompt="p")

    with patch(
        "taskmill.generation.subprocess.run",
        side_effect=side_effect,
        return_value=_proc(returncode=2, stderr="warming up\nboom\n"),
    ):
        with pytest.raises(GenerationError, match=message):
            strategy.generate(request)


def test_fallback_chain_moves_on_after_failure() -> None:
    config = GenerationConfig(main=("primary",), research=("backup",), fallback=("research",))
    chain = build_chain(config, role="main")
    request = GenerationRequest(role="main", prompt="p")

    with patch(
        "taskmill.generation.subprocess.run",
        side_effect=[_proc(returncode=1, stderr="overloaded"), _proc(stdout="ok")],
    ) as run:
        result = chain.generate(request)

    assert [call.args[0] for call in run.call_args_list] == [["primary"], ["backup"]]
    assert result.role == "research"
    assert result.text == "ok"


def test_fallback_chain_reports_every_failure() -> None:
    config = GenerationConfig(main=("primary",), research=("backup",), fallback=("research",))
    chain = build_chain(config)

    with patch("taskmill.generation.subprocess.run", return_value=_proc(returncode=1)):
        with pytest.raises(GenerationError, match="all generation strategies failed") as raised:
            chain.generate(GenerationRequest(role="main", prompt="p"))
    assert "main:primary" in str(raised.value)
    assert "research:backup" in str(raised.value)


def test_empty_chain_is_an_error() -> None:
    with pytest.raises(GenerationError, match="no generation command configured"):
        FallbackChain([]).generate(GenerationRequest(role="main", prompt="p"))


def test_role_order() -> None:
    config = GenerationConfig(fallback=("main", "research"))
    assert role_order(config, "research") == ["research", "main"]
    assert role_order(GenerationConfig(), "main") == ["main"]
    with pytest.raises(GenerationError):
        role_order(config, "creative")


def test_build_chain_skips_roles_without_a_command() -> None:
    config = GenerationConfig(research=("backup",), fallback=("research",))
    chain = build_chain(config, role="main")
    assert [strategy.name for strategy in chain.strategies] == ["research:backup"]
