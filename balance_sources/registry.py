"""
Balance Source Registry - Protocol identifier to source class.

The mapping is static; several protocol identifiers may share one
implementation (e.g. every chain read through the bank module).

Usage:
    config = SourceConfig.from_yaml("neutron.yaml")
    source = create_source(config)
"""

import logging
from typing import Optional

from balance_sources.base import BaseBalanceSource
from balance_sources.config import SourceConfig
from balance_sources.exceptions import UnknownProtocolError
from balance_sources.providers.astroport import AstroportGeneratorSource, AstroportSource
from balance_sources.providers.bank_module import BankModuleSource
from balance_sources.query import LedgerQueryClient


logger = logging.getLogger(__name__)


SOURCE_REGISTRY: dict[str, type[BaseBalanceSource]] = {
    "neutron": BankModuleSource,
    "kujira": BankModuleSource,
    "bank-module": BankModuleSource,
    "astroport": AstroportSource,
    "generator": AstroportGeneratorSource,
}


def list_protocols() -> list[str]:
    """Registered protocol identifiers, sorted."""
    return sorted(SOURCE_REGISTRY)


def get_source_class(protocol: str) -> type[BaseBalanceSource]:
    """
    Look up the source class for a protocol identifier.

    Raises:
        UnknownProtocolError: If no source is registered for `protocol`
    """
    source_class = SOURCE_REGISTRY.get((protocol or "").lower())
    if source_class is None:
        raise UnknownProtocolError(
            f"Unsupported protocol: {protocol}",
            protocol=protocol,
            known_protocols=list_protocols(),
        )
    return source_class


def create_source(
    config: SourceConfig,
    client: Optional[LedgerQueryClient] = None,
) -> BaseBalanceSource:
    """Instantiate the source registered for `config.protocol`."""
    source_class = get_source_class(config.protocol)
    source = source_class(config, client=client)
    logger.info(
        f"Created {source_class.__name__} for '{config.source_name}' "
        f"with {len(config.assets)} assets"
    )
    return source
