"""
Backend registry and client construction.

Adapters register themselves with `register_backend`; adding a backend never
requires changes here.
"""

from __future__ import annotations

import importlib
from typing import Any, Callable, Dict, List, Mapping, Type, Union

from core.config.settings import ClientConfig
from core.logging import get_logger
from core.trading.client import TradingClient
from core.trading.interfaces import BrokerAdapter
from core.utils.exceptions import ConfigurationError

logger = get_logger(__name__, component="client_factory")

_BACKENDS: Dict[str, Type[BrokerAdapter]] = {}

BUILTIN_BACKENDS_PACKAGE = "brokers"


def register_backend(name: str) -> Callable[[Type[BrokerAdapter]], Type[BrokerAdapter]]:
    """Class decorator registering an adapter type under a backend identifier."""

    def decorator(adapter_cls: Type[BrokerAdapter]) -> Type[BrokerAdapter]:
        existing = _BACKENDS.get(name)
        if existing is not None and existing is not adapter_cls:
            raise ValueError(f"Backend {name!r} is already registered to {existing.__name__}")
        _BACKENDS[name] = adapter_cls
        return adapter_cls

    return decorator


def _load_builtin_backends() -> None:
    importlib.import_module(BUILTIN_BACKENDS_PACKAGE)


def available_backends() -> List[str]:
    _load_builtin_backends()
    return sorted(_BACKENDS)


class ClientFactory:
    """Selects the adapter for a configuration and wraps it in a TradingClient."""

    @staticmethod
    def build(config: Union[ClientConfig, Mapping[str, Any]]) -> TradingClient:
        """
        Construct a client. No network I/O is performed.

        Raises:
            ConfigurationError: unknown backend, or credentials missing/malformed
        """
        if isinstance(config, Mapping):
            config = ClientConfig.from_mapping(config)
        elif not isinstance(config, ClientConfig):
            raise ConfigurationError("Configuration must be a ClientConfig or a mapping",
                                     config_value=type(config).__name__)

        _load_builtin_backends()
        adapter_cls = _BACKENDS.get(config.backend)
        if adapter_cls is None:
            raise ConfigurationError(
                f"Unknown backend: {config.backend!r}",
                config_field="backend",
                config_value=config.backend,
                details={"available": sorted(_BACKENDS)},
            )

        adapter_cls.validate_config(config)
        adapter = adapter_cls(config)
        logger.info("Trading client constructed", backend=config.backend, paper=config.paper,
                    adapter=adapter_cls.__name__)
        return TradingClient(adapter, config)


def build_client(config: Union[ClientConfig, Mapping[str, Any]]) -> TradingClient:
    return ClientFactory.build(config)
