"""
Data models for the travel product catalog
"""
from typing import List
from pydantic import BaseModel, Field


class TravelProduct(BaseModel):
    """A bookable catalog item"""
    id: str
    name: str
    description: str
    price: float
    bookingUrl: str = ""
    tags: List[str] = Field(default_factory=list)
    duration: str = ""
    recommendation: str = ""
    thumbnailUrl: str = ""


class Destination(BaseModel):
    """Catalog file grouping of products"""
    name: str = ""
    attractions: List[TravelProduct] = Field(default_factory=list)


class CatalogFile(BaseModel):
    """Top level of the catalog JSON file"""
    destinations: List[Destination] = Field(default_factory=list)


class TravelRecommendation(BaseModel):
    """Ranked subset of the catalog for a query"""
    products: List[TravelProduct]
    totalProducts: int
    message: str
