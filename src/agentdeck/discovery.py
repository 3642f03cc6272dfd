"""Backend kind detection from A2A agent cards."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .descriptors import BackendKind

logger = logging.getLogger(__name__)

AGENT_CARD_PATH = "/.well-known/agent-card.json"

_ORGANIZATION_KINDS = {
    "google": BackendKind.GEMINI,
    "openai": BackendKind.CODEX,
    "anthropic": BackendKind.CLAUDE,
}

_NAME_HINTS = (
    ("gemini", BackendKind.GEMINI),
    ("codex", BackendKind.CODEX),
    ("claude", BackendKind.CLAUDE),
)


def agent_card_url(base_url: str) -> str:
    return base_url.rstrip("/") + AGENT_CARD_PATH


def detect_backend_kind(card: dict | None) -> BackendKind:
    """Detect the backend family from an agent card.

    The provider organization wins; the card name is a secondary hint.
    """
    if not isinstance(card, dict):
        return BackendKind.UNKNOWN

    provider = card.get("provider")
    if isinstance(provider, dict) and isinstance(provider.get("organization"), str):
        kind = _ORGANIZATION_KINDS.get(provider["organization"].strip().lower())
        if kind is not None:
            return kind

    name = card.get("name")
    if isinstance(name, str):
        lowered = name.lower()
        for hint, kind in _NAME_HINTS:
            if hint in lowered:
                return kind

    return BackendKind.UNKNOWN


def card_fingerprint(card_url: str, card: dict | None) -> str:
    """Stable identity of a card: url, name, protocol version and organization."""
    card = card if isinstance(card, dict) else {}
    provider = card.get("provider") if isinstance(card.get("provider"), dict) else {}
    fields = (
        card_url,
        card.get("name") or "",
        card.get("protocolVersion") or "",
        provider.get("organization") or "",
    )
    return "|".join(str(field) for field in fields)


@dataclass(frozen=True)
class ResolvedBackend:
    kind: BackendKind
    fingerprint: str
    card_url: str


class BackendResolver:
    """Resolves and caches the backend kind behind a base URL."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 5.0):
        self._http_client = http_client
        self._timeout = timeout
        self._cache: dict[str, ResolvedBackend] = {}

    async def fetch_card(self, card_url: str) -> dict | None:
        if self._http_client is not None:
            response = await self._http_client.get(card_url, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(card_url)
        response.raise_for_status()
        card = response.json()
        return card if isinstance(card, dict) else None

    async def resolve(self, base_url: str) -> ResolvedBackend:
        """Return the backend behind ``base_url``; failures resolve to unknown.

        Args:
            base_url: Server base URL (the agent card lives under it)

        Returns:
            ResolvedBackend, cached per card URL until :meth:`forget`
        """
        card_url = agent_card_url(base_url)
        cached = self._cache.get(card_url)
        if cached is not None:
            return cached

        try:
            card = await self.fetch_card(card_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not fetch agent card from {card_url}: {e}")
            card = None

        resolved = ResolvedBackend(
            kind=detect_backend_kind(card),
            fingerprint=card_fingerprint(card_url, card),
            card_url=card_url,
        )
        self._cache[card_url] = resolved
        logger.info(f"Resolved {base_url} as backend '{resolved.kind.value}'")
        return resolved

    def forget(self, base_url: str) -> None:
        self._cache.pop(agent_card_url(base_url), None)
