"""
Render-segment derivation from placeholder-substituted documents
"""
from enum import Enum
from typing import Iterable, List, Mapping, Union

from trip_assistant.models.catalog import TravelProduct
from trip_assistant.models.chat import ProductSegment, RenderSegment, TextSegment
from trip_assistant.services.tag_codec import split_placeholders


class UnknownProductPolicy(str, Enum):
    """What to render for a placeholder whose id is not in the catalog"""
    ERROR = "error"  # inline warning text
    SKIP = "skip"    # nothing


UNKNOWN_PRODUCT_WARNING = "未找到产品: {product_id}"


def derive_segments(
    document: str,
    products: Union[Mapping[str, TravelProduct], Iterable[TravelProduct]],
    policy: UnknownProductPolicy = UnknownProductPolicy.ERROR
) -> List[RenderSegment]:
    """
    Split a document into ordered text and product segments.

    Whitespace-only text runs are dropped; everything else is kept verbatim.
    """
    if not isinstance(products, Mapping):
        products = {product.id: product for product in products}

    segments: List[RenderSegment] = []
    for part in split_placeholders(document):
        if isinstance(part, str):
            if part.strip():
                segments.append(TextSegment(text=part))
            continue

        product = products.get(part.product_id)
        if product is not None:
            segments.append(ProductSegment(product_id=part.product_id, product=product))
        elif policy == UnknownProductPolicy.ERROR:
            segments.append(TextSegment(
                text=UNKNOWN_PRODUCT_WARNING.format(product_id=part.product_id),
                warning=True
            ))

    return segments

