"""
Travel product catalog
"""
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog
from pydantic import ValidationError

from trip_assistant.models.catalog import CatalogFile, TravelProduct, TravelRecommendation
from trip_assistant.services.errors import CatalogError

logger = structlog.get_logger()

MAX_RECOMMENDATIONS = 6

# Query words mapped to catalog tags
KEYWORD_TAGS: Dict[str, List[str]] = {
    "晴空塔": ["SKYTREE", "TOWER_BUILDING"],
    "地铁": ["RAILWAY_TICKET", "PASS"],
    "交通": ["RAILWAY_TICKET", "TRANSPORTATION"],
    "机场": ["AIRPORT_TRANSPORTATION"],
    "夜景": ["NIGHT_VIEW", "CRUISES"],
    "巡航": ["CRUISES"],
    "文化": ["CULTURE", "SHOW"],
    "博物馆": ["MUSEUM_GALLERY"],
    "表演": ["SHOW"],
    "套票": ["BUNDLE"],
    "一日券": ["PASS"],
}


class CatalogService:
    """In-memory catalog snapshot with simple keyword and budget filtering"""

    def __init__(self, products: Iterable[TravelProduct]):
        self._products: List[TravelProduct] = list(products)
        self._by_id: Dict[str, TravelProduct] = {}
        for product in self._products:
            # First occurrence wins
            self._by_id.setdefault(product.id, product)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CatalogService":
        """
        Load a catalog file of ``destinations[].attractions[]`` and flatten it
        """
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            catalog = CatalogFile.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load catalog", path=str(path), error=str(e))
            raise CatalogError(f"Cannot load catalog from {path}: {e}") from e

        products = [
            attraction
            for destination in catalog.destinations
            for attraction in destination.attractions
        ]
        logger.info("Catalog loaded", path=str(path), products=len(products))
        return cls(products)

    def get_all_products(self) -> List[TravelProduct]:
        return list(self._products)

    def get_product(self, product_id: str) -> Optional[TravelProduct]:
        return self._by_id.get(product_id)

    def search_products(self, keywords: List[str]) -> List[TravelProduct]:
        """Products whose text contains any keyword (case-insensitive)"""
        if not keywords:
            return list(self._products)

        lowered = [keyword.lower() for keyword in keywords]
        results = []
        for product in self._products:
            search_text = " ".join([
                product.name,
                product.description,
                " ".join(product.tags),
                product.recommendation,
            ]).lower()
            if any(keyword in search_text for keyword in lowered):
                results.append(product)
        return results

    @staticmethod
    def filter_by_budget(products: List[TravelProduct], budget: float) -> List[TravelProduct]:
        return [product for product in products if product.price <= budget]

    @staticmethod
    def filter_by_tags(products: List[TravelProduct], tags: List[str]) -> List[TravelProduct]:
        lowered = [tag.lower() for tag in tags]
        return [
            product for product in products
            if any(tag in product_tag.lower() for tag in lowered for product_tag in product.tags)
        ]

    def get_recommendations(self, query: str, budget: Optional[float] = None) -> TravelRecommendation:
        """
        Keyword match, budget cut-off, cheapest first, capped at six
        """
        products = self._products
        keywords = self.extract_keywords(query)
        if keywords:
            products = self.search_products(keywords)

        if budget and budget > 0:
            products = self.filter_by_budget(products, budget)

        products = sorted(products, key=lambda product: product.price)
        recommended = products[:MAX_RECOMMENDATIONS]

        if not recommended:
            message = "很抱歉，没有找到符合您需求的旅游产品。您可以尝试调整预算或换个关键词搜索。"
        elif budget and len(recommended) < len(products):
            message = f"根据您的预算和需求，为您推荐了 {len(recommended)} 个旅游产品："
        else:
            message = f"为您推荐了 {len(recommended)} 个旅游产品："

        return TravelRecommendation(
            products=recommended,
            totalProducts=len(products),
            message=message
        )

    @staticmethod
    def extract_keywords(query: str) -> List[str]:
        """Map known query words to tags; fall back to the raw query"""
        keywords: List[str] = []
        for word, tags in KEYWORD_TAGS.items():
            if word in query:
                for tag in tags:
                    if tag not in keywords:
                        keywords.append(tag)

        if not keywords and query.strip():
            keywords.append(query.strip())
        return keywords
