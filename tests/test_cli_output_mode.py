from __future__ import annotations

import pytest

from taskmill.ui import (
    OUTPUT_ENV_VAR,
    make_console,
    render_help,
    render_table,
    resolve_output_mode,
    styled_status,
)


def test_auto_mode_follows_the_terminal() -> None:
    assert resolve_output_mode(env={}, is_tty=False) == "plain"
    assert resolve_output_mode(env={}, is_tty=True) == "rich"
    assert resolve_output_mode("auto", env={}, is_tty=True) == "rich"


def test_env_applies_when_flag_missing() -> None:
    assert resolve_output_mode(env={OUTPUT_ENV_VAR: " RICH "}, is_tty=False) == "rich"
    assert resolve_output_mode(env={OUTPUT_ENV_VAR: ""}, is_tty=False) == "plain"


def test_flag_overrides_env() -> None:
    mode = resolve_output_mode("plain", env={OUTPUT_ENV_VAR: "rich"}, is_tty=True)
    assert mode == "plain"


@pytest.mark.parametrize("requested, env", [("fancy", {}), (None, {OUTPUT_ENV_VAR: "invalid"})])
def test_invalid_values_are_rejected(requested: str | None, env: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        resolve_output_mode(requested, env=env, is_tty=True)


def test_styled_status_markup() -> None:
    assert styled_status("done") == "[green]done[/green]"
    assert styled_status("mystery") == "mystery"
    assert styled_status(None) == styled_status("pending")


def test_plain_table_has_no_escape_codes(capsys: pytest.CaptureFixture[str]) -> None:
    console = make_console("plain")
    render_table(console, headers=["ID", "Title"], rows=[[1, "Setup"], [2, None]])

    out = capsys.readouterr().out
    assert "Setup" in out
    assert "\x1b[" not in out


def test_plain_help_lists_sections(capsys: pytest.CaptureFixture[str]) -> None:
    render_help(
        output_mode="plain",
        command="taskmill",
        summary="Track tasks",
        usage=["taskmill <command>"],
        sections=[("Commands", [("list", "show tasks")])],
        examples=[("taskmill list", "show the current tag")],
    )

    out = capsys.readouterr().out
    assert "taskmill <command>" in out
    assert "list" in out
    assert "show tasks" in out
