"""Tests for render-segment derivation."""

from trip_assistant.models.chat import ProductSegment, TextSegment
from trip_assistant.services.segments import (
    UnknownProductPolicy,
    derive_segments,
)
from trip_assistant.services.tag_codec import (
    PLACEHOLDER_PATTERN,
    extract_ids,
    placeholder_for,
    substitute_placeholders,
)


def segments_to_document(segments):
    """Rebuild a placeholder document from segments."""
    return "".join(
        placeholder_for(segment.product_id) if isinstance(segment, ProductSegment) else segment.text
        for segment in segments
    )


def test_text_and_products_alternate(small_catalog):
    """Placeholders become product segments between text runs."""
    document = substitute_placeholders("Go up\n\n[PRODUCT:ABC-1]\n\nthen cruise [PRODUCT:XYZ_2] done")
    segments = derive_segments(document, small_catalog.get_all_products())

    assert [type(segment) for segment in segments] == [
        TextSegment, ProductSegment, TextSegment, ProductSegment, TextSegment
    ]
    assert segments[0].text == "Go up\n\n"
    assert segments[1].product.name == "Tower ticket"
    assert segments[3].product_id == "XYZ_2"
    assert segments[4].text == " done"


def test_whitespace_runs_are_dropped(small_catalog):
    """Empty and whitespace-only text between placeholders yields no segment."""
    document = substitute_placeholders("[PRODUCT:ABC-1]\n\n[PRODUCT:XYZ_2]")
    segments = derive_segments(document, small_catalog.get_all_products())

    assert [segment.type for segment in segments] == ["product", "product"]


def test_unknown_product_error_policy(small_catalog):
    """The error policy renders an inline warning at the marker position."""
    document = substitute_placeholders("a [PRODUCT:MISSING] b")
    segments = derive_segments(document, small_catalog.get_all_products(), UnknownProductPolicy.ERROR)

    assert len(segments) == 3
    assert segments[1].type == "text"
    assert segments[1].warning is True
    assert "MISSING" in segments[1].text


def test_unknown_product_skip_policy(small_catalog):
    """The skip policy omits the position entirely."""
    document = substitute_placeholders("a [PRODUCT:MISSING] b")
    segments = derive_segments(document, small_catalog.get_all_products(), UnknownProductPolicy.SKIP)

    assert [segment.text for segment in segments] == ["a ", " b"]
    assert not any(segment.warning for segment in segments)


def test_segments_reproduce_reference_order(small_catalog):
    """Rebuilding the document from segments keeps the id sequence."""
    raw = "x [PRODUCT:XYZ_2] y [PRODUCT:ABC-1] z [PRODUCT:XYZ_2]"
    document = substitute_placeholders(raw)
    segments = derive_segments(document, small_catalog.get_all_products())

    rebuilt = segments_to_document(segments)
    assert rebuilt == document
    assert PLACEHOLDER_PATTERN.findall(rebuilt) == extract_ids(raw)


def test_accepts_mapping(small_catalog):
    """Products may be passed keyed by id."""
    products = {product.id: product for product in small_catalog.get_all_products()}
    segments = derive_segments(substitute_placeholders("[PRODUCT:ABC-1]"), products)

    assert segments[0].product.id == "ABC-1"


def test_policy_parses_from_string():
    """The policy is configured by name."""
    assert UnknownProductPolicy("skip") is UnknownProductPolicy.SKIP
    assert UnknownProductPolicy("error") is UnknownProductPolicy.ERROR
