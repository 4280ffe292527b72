"""Seam to an external content generator.

The core never calls a generator itself. The CLI builds a request, runs it
through an ordered chain of strategies (one per role) and hands the text to
the expansion normalizer before anything is mutated.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import GENERATION_ROLES, GenerationConfig
from .errors import GenerationError

DEFAULT_TIMEOUT_S = 600.0


@dataclass(frozen=True)
class GenerationRequest:
    role: str
    prompt: str
    schema: dict[str, Any] | None = None


@dataclass(frozen=True)
class GenerationResult:
    role: str
    strategy: str
    text: str
    data: Any = None


class GenerationStrategy:
    name: str
    role: str

    def generate(self, request: GenerationRequest) -> GenerationResult:
        raise NotImplementedError


class CommandStrategy(GenerationStrategy):
    """Run a configured command with the prompt on stdin; stdout is the result."""

    def __init__(
        self,
        role: str,
        argv: tuple[str, ...] | list[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> None:
        if not argv:
            raise ValueError("command argv cannot be empty")
        self.role = role
        self.name = f"{role}:{argv[0]}"
        self.argv = tuple(argv)
        self.cwd = cwd
        self.timeout = timeout

    def build_argv(self, request: GenerationRequest) -> list[str]:
        return list(self.argv)

    def generate(self, request: GenerationRequest) -> GenerationResult:
        argv = self.build_argv(request)
        try:
            proc = subprocess.run(
                argv,
                cwd=self.cwd,
                input=request.prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise GenerationError(f"{self.name}: command not found: {argv[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise GenerationError(f"{self.name}: timed out after {self.timeout}s") from exc

        if proc.returncode != 0:
            detail = (proc.stderr or "").strip().splitlines()
            tail = detail[-1] if detail else ""
            raise GenerationError(
                f"{self.name}: exited with code {proc.returncode}"
                + (f": {tail}" if tail else "")
            )

        text = proc.stdout or ""
        data: Any = None
        if request.schema is not None:
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = None
        return GenerationResult(role=self.role, strategy=self.name, text=text, data=data)


class FallbackChain:
    """Try each strategy in order; the first success wins."""

    def __init__(self, strategies: list[GenerationStrategy]) -> None:
        self.strategies = list(strategies)

    def generate(self, request: GenerationRequest) -> GenerationResult:
        if not self.strategies:
            raise GenerationError(f"no generation command configured for role {request.role!r}")
        failures: list[str] = []
        for strategy in self.strategies:
            attempt = request
            if strategy.role != request.role:
                attempt = GenerationRequest(
                    role=strategy.role,
                    prompt=request.prompt,
                    schema=request.schema,
                )
            try:
                return strategy.generate(attempt)
            except GenerationError as exc:
                failures.append(str(exc))
        raise GenerationError("all generation strategies failed: " + "; ".join(failures))


def role_order(config: GenerationConfig, role: str) -> list[str]:
    if role not in GENERATION_ROLES:
        raise GenerationError(
            f"unknown generation role: {role!r} (expected one of: {', '.join(GENERATION_ROLES)})"
        )
    order = [role]
    for fallback in config.fallback:
        if fallback not in order:
            order.append(fallback)
    return order


def build_chain(
    config: GenerationConfig,
    *,
    role: str = "main",
    cwd: Path | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_S,
) -> FallbackChain:
    strategies: list[GenerationStrategy] = []
    for name in role_order(config, role):
        argv = config.command_for(name)
        if argv:
            strategies.append(CommandStrategy(name, argv, cwd=cwd, timeout=timeout))
    return FallbackChain(strategies)
