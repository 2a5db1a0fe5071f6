import logging
from typing import List, Optional

from .catalog_cache import CatalogCache
from .entity_resolver import (
    EntityResolver,
    MatchCandidate,
    ResolutionResult,
    DEFAULT_THRESHOLD,
    SUGGESTION_THRESHOLD,
    DEFAULT_MAX_RESULTS,
)
from ..models.lima import CompanyDrug, PriceListItem

logger = logging.getLogger(__name__)


def _price_item_name(item: PriceListItem) -> Optional[str]:
    return item.drug.drug_name


def _company_drug_name(drug: CompanyDrug) -> Optional[str]:
    return drug.name


class DrugSearchService:
    """Drug lookups over the cached price list and company drug list"""

    def __init__(self, catalog_cache: CatalogCache, resolver: Optional[EntityResolver] = None):
        self.catalog_cache = catalog_cache
        self.resolver = resolver or EntityResolver()

    async def resolve_in_price_list(self, drug_name: str,
                                    threshold: float = DEFAULT_THRESHOLD) -> ResolutionResult:
        price_list = await self.catalog_cache.get_price_list()
        return self.resolver.resolve(drug_name, price_list, _price_item_name, threshold)

    async def resolve_company_drug(self, drug_name: str,
                                   threshold: float = DEFAULT_THRESHOLD) -> ResolutionResult:
        """Only active drugs of the company portfolio are considered"""
        drugs = await self.catalog_cache.get_company_drugs()
        active = [drug for drug in drugs if drug.is_active]
        return self.resolver.resolve(drug_name, active, _company_drug_name, threshold)

    async def search_similar(self, drug_name: str, threshold: float = SUGGESTION_THRESHOLD,
                             max_results: int = DEFAULT_MAX_RESULTS) -> List[MatchCandidate]:
        price_list = await self.catalog_cache.get_price_list()
        return self.resolver.search_similar(drug_name, price_list, _price_item_name, threshold, max_results)

    async def get_all_balances(self) -> List[PriceListItem]:
        """Price-list rows that carry a drug name, sorted by name"""
        price_list = await self.catalog_cache.get_price_list()
        named = [item for item in price_list if item.drug.drug_name]
        return sorted(named, key=lambda item: item.drug.drug_name.lower())
