"""
Catalog endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
import structlog

from trip_assistant.models.catalog import TravelProduct, TravelRecommendation
from trip_assistant.services.catalog import CatalogService

logger = structlog.get_logger()

router = APIRouter(tags=["catalog"])


def get_catalog(req: Request) -> CatalogService:
    return req.app.state.catalog


@router.get("/products", response_model=List[TravelProduct])
async def list_products(req: Request) -> List[TravelProduct]:
    return get_catalog(req).get_all_products()


@router.get("/products/{product_id}", response_model=TravelProduct)
async def get_product(product_id: str, req: Request) -> TravelProduct:
    product = get_catalog(req).get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product not found: {product_id}")
    return product


@router.get("/recommendations", response_model=TravelRecommendation)
async def recommend(
    req: Request,
    query: str = Query(..., min_length=1, max_length=500),
    budget: Optional[float] = Query(default=None, gt=0)
) -> TravelRecommendation:
    """Keyword and budget filtered products, cheapest first"""
    recommendation = get_catalog(req).get_recommendations(query, budget)
    logger.info(
        "Recommendations served",
        query_length=len(query),
        budget=budget,
        results=len(recommendation.products)
    )
    return recommendation
