from __future__ import annotations

import difflib
import logging
from typing import TYPE_CHECKING

from qbatch_engine.framework.errors import ProviderNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from qbatch_engine.framework.model import ProviderCapability

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Name to `ProviderCapability` map.

    Built once at startup and handed to every component that needs provider
    data. Capabilities are frozen, so lookups can be shared freely. Names
    match case-insensitively and ignore surrounding whitespace.
    """

    def __init__(self, providers: Iterable[ProviderCapability] = ()) -> None:
        self._providers: dict[str, ProviderCapability] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ProviderCapability, *, replace: bool = False) -> None:
        """Add a provider.

        Raises:
            ValueError: If the name is taken and `replace` is False.

        """
        key = _key(provider.name)
        if key in self._providers and not replace:
            message = f"provider {provider.name!r} is already registered"
            raise ValueError(message)
        self._providers[key] = provider
        logger.debug(
            "provider registered",
            extra={"provider": provider.name, "qubits": provider.qubit_count},
        )

    def lookup(self, name: str) -> ProviderCapability:
        """Return the capability of a provider.

        Raises:
            ProviderNotFoundError: If no provider has this name.

        """
        provider = self._providers.get(_key(name))
        if provider is None:
            close = difflib.get_close_matches(_key(name), self._providers, n=1)
            actions = [f"did you mean {self._providers[close[0]].name!r}?"] if close else []
            actions.append(f"use one of: {', '.join(self.names())}")
            message = f"unknown provider {name!r}"
            raise ProviderNotFoundError(message, suggested_actions=actions)
        return provider

    def names(self) -> list[str]:
        return [provider.name for provider in self._providers.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _key(name) in self._providers

    def __iter__(self) -> Iterator[ProviderCapability]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)


def _key(name: str) -> str:
    return name.strip().lower()
