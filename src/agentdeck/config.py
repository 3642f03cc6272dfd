"""Runtime configuration for agentdeck."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field


DEFAULT_HOST = "127.0.0.1"

# Preferred ports; the adapters probe upward from these when they are taken.
DEFAULT_PORTS = {
    "claude-code": 50003,
    "codex": 50002,
    "gemini-cli": 41242,
}

CLAUDE_ALLOWED_TOOLS = ("Read", "Write", "Edit", "Bash", "Glob", "Grep", "WebSearch", "WebFetch")


@dataclass
class DeckConfig:
    """Settings shared by the adapters, the streaming client and the entry points.

    Values come from the defaults below, optionally overridden through
    ``AGENTDECK_*`` environment variables (see :meth:`from_env`).
    """

    host: str = DEFAULT_HOST
    ports: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PORTS))
    startup_timeout: float = 30.0
    shutdown_timeout: float = 5.0
    card_timeout: float = 5.0

    claude_cli: str = "claude"
    claude_model: str = "claude-sonnet-4-20250514"
    claude_allowed_tools: tuple[str, ...] = CLAUDE_ALLOWED_TOOLS

    codex_cli: str = "codex"
    codex_model: str | None = None

    gemini_command: tuple[str, ...] = ("npx", "-y", "@google/gemini-cli-a2a-server")

    web_host: str = DEFAULT_HOST
    web_port: int = 8000

    def port_for(self, agent_id: str) -> int:
        """Return the preferred port for ``agent_id``."""
        return self.ports.get(agent_id, DEFAULT_PORTS.get(agent_id, 50000))

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> DeckConfig:
        """Build a config from ``AGENTDECK_*`` environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``)

        Returns:
            DeckConfig with overrides applied

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("AGENTDECK_HOST"):
            config.host = env["AGENTDECK_HOST"]
        if env.get("AGENTDECK_STARTUP_TIMEOUT"):
            config.startup_timeout = float(env["AGENTDECK_STARTUP_TIMEOUT"])

        for agent_id in DEFAULT_PORTS:
            key = "AGENTDECK_" + agent_id.upper().replace("-", "_") + "_PORT"
            if env.get(key):
                config.ports[agent_id] = int(env[key])

        if env.get("AGENTDECK_CLAUDE_CLI"):
            config.claude_cli = env["AGENTDECK_CLAUDE_CLI"]
        if env.get("AGENTDECK_CLAUDE_MODEL"):
            config.claude_model = env["AGENTDECK_CLAUDE_MODEL"]
        if env.get("AGENTDECK_CODEX_CLI"):
            config.codex_cli = env["AGENTDECK_CODEX_CLI"]
        if env.get("AGENTDECK_CODEX_MODEL"):
            config.codex_model = env["AGENTDECK_CODEX_MODEL"]
        if env.get("AGENTDECK_GEMINI_COMMAND"):
            config.gemini_command = tuple(shlex.split(env["AGENTDECK_GEMINI_COMMAND"]))
        if env.get("AGENTDECK_WEB_HOST"):
            config.web_host = env["AGENTDECK_WEB_HOST"]
        if env.get("AGENTDECK_WEB_PORT"):
            config.web_port = int(env["AGENTDECK_WEB_PORT"])

        return config
