"""
Providers package - Balance source implementations.
"""

from balance_sources.providers.astroport import AstroportGeneratorSource, AstroportSource
from balance_sources.providers.bank_module import BankModuleSource


__all__ = [
    "AstroportSource",
    "AstroportGeneratorSource",
    "BankModuleSource",
]
