"""Tests for incremental stream assembly."""

import pytest

from trip_assistant.services.assembler import StreamAssembler
from trip_assistant.services.llm import MOCK_RESPONSE, mock_fragments
from trip_assistant.services.tag_codec import PLACEHOLDER_PATTERN, extract_ids, placeholder_for, substitute_placeholders


def feed(fragments):
    """Consume fragments, returning the assembler and every live document."""
    assembler = StreamAssembler()
    live = [assembler.consume(fragment) for fragment in fragments]
    return assembler, live


def test_scenario_marker_split_inside_literal():
    """The id only appears once the closing bracket has arrived."""
    assembler, live = feed(["Visit Tower [PRO", "DUCT:ABC-1]", " today."])

    assert "ABC-1" not in live[0]
    assert "[PRO" not in live[0]
    assert live[0] == "Visit Tower "
    assert live[1] == f"Visit Tower {placeholder_for('ABC-1')}"

    final = assembler.finish()
    assert final.document == f"Visit Tower {placeholder_for('ABC-1')} today."
    assert final.references == ("ABC-1",)


@pytest.mark.parametrize("marker", ["[PRODUCT:X]", "[PRODUCT:LINKTIVITY-2IV2I]", "[PRODUCT:a_b-c]"])
def test_every_two_way_split_is_safe(marker):
    """No intermediate document shows any part of a split marker."""
    product_id = marker[len("[PRODUCT:"):-1]
    text = f"before {marker} after"
    start = text.index(marker)

    for cut in range(start + 1, start + len(marker)):
        assembler, live = feed([text[:cut], text[cut:]])

        assert live[0] == "before "
        assert product_id not in live[0]

        final = assembler.finish()
        assert final.references == (product_id,)
        assert final.document == substitute_placeholders(text)


def test_three_way_splits_are_safe():
    """Markers cut into three pieces never leak partial text."""
    marker = "[PRODUCT:ABC-1]"
    for first in range(1, len(marker) - 1):
        for second in range(first + 1, len(marker)):
            fragments = ["x ", marker[:first], marker[first:second], marker[second:], " y"]
            assembler, live = feed(fragments)

            for document in live[:3]:
                assert document == "x "
            assert live[3] == f"x {placeholder_for('ABC-1')}"
            assert assembler.finish().references == ("ABC-1",)


def test_character_by_character_matches_single_pass():
    """Incremental references equal one extract_ids pass over the full text."""
    text = "Day 1 [PRODUCT:A] and [PRODUCT:B-2]\n\n[PRODUCT:A] end [PRODUCT:C"
    assembler, live = feed(list(text))

    assert all("[PRODUCT" not in document for document in live)
    final = assembler.finish()
    assert list(final.references) == extract_ids(text)
    assert final.document.endswith("end [PRODUCT:C")


def test_mock_fixture_replays_cleanly():
    """The fallback fixture resolves all four markers with no torn output."""
    assembler, live = feed(mock_fragments())

    assert all("[PRODUCT" not in document for document in live)
    final = assembler.finish()
    assert list(final.references) == extract_ids(MOCK_RESPONSE)
    assert final.references == (
        "LINKTIVITY-2IV2I",
        "LINKTIVITY-3PWVV",
        "Ninja-Kabuki-Tokyo",
        "LINKTIVITY-RHT5G",
    )


def test_committed_text_only_grows():
    """Committed text is never retracted between fragments."""
    _, live = feed(list("a [PRODUCT:A] [b] [PRODUCT:B] [PRO"))

    for previous, current in zip(live, live[1:]):
        assert current.startswith(previous)


def test_pending_holds_dangling_suffix():
    """Pending is the raw suffix and is never part of committed."""
    assembler = StreamAssembler()
    assembler.consume("Hello [PRODUCT:AB")

    assert assembler.committed == "Hello "
    assert assembler.pending == "[PRODUCT:AB"
    assert assembler.references == ()

    assembler.consume("C] world")
    assert assembler.pending == ""
    assert assembler.references == ("ABC",)


def test_references_are_append_only_with_duplicates():
    """Ids accumulate in order as markers complete."""
    assembler = StreamAssembler()
    snapshots = []
    for fragment in ["[PRODUCT:A]", " [PRODUCT:", "B] ", "[PRODUCT:A]"]:
        assembler.consume(fragment)
        snapshots.append(assembler.references)

    assert snapshots == [("A",), ("A",), ("A", "B"), ("A", "B", "A")]


def test_finish_flushes_unterminated_marker_as_text():
    """A prefix that never closes is shown as plain text at the end."""
    assembler, live = feed(["Tip: ", "[PRODUCT:", "NOPE"])

    assert live[-1] == "Tip: "
    final = assembler.finish()
    assert final.document == "Tip: [PRODUCT:NOPE"
    assert final.references == ()


def test_finish_with_lone_bracket():
    """A trailing '[' is held while streaming and kept on finish."""
    assembler, live = feed(["see list ["])

    assert live == ["see list "]
    assert assembler.finish().document == "see list ["


def test_empty_stream():
    """Finishing without fragments yields an empty document."""
    final = StreamAssembler().finish()

    assert final.document == ""
    assert final.references == ()


def test_finish_only_once():
    """The assembler cannot be reused after finish."""
    assembler = StreamAssembler()
    assembler.consume("text")
    assembler.finish()

    assert assembler.finished
    with pytest.raises(RuntimeError):
        assembler.finish()
    with pytest.raises(RuntimeError):
        assembler.consume("more")


def test_references_snapshot_is_immutable():
    """Published references cannot be mutated by consumers."""
    assembler = StreamAssembler()
    assembler.consume("[PRODUCT:A]")
    references = assembler.references

    assert isinstance(references, tuple)
    assembler.consume("[PRODUCT:B]")
    assert references == ("A",)


def test_forged_placeholder_in_stream_stays_text():
    """Only resolved markers produce placeholders, even across fragments."""
    forged = placeholder_for("ABC-1")
    assembler, live = feed(["see ", forged[:10], forged[10:], " and [PRODUCT:XYZ_2]"])

    final = assembler.finish()
    assert final.references == ("XYZ_2",)
    assert PLACEHOLDER_PATTERN.findall(final.document) == ["XYZ_2"]
    assert all("ABC-1" not in PLACEHOLDER_PATTERN.findall(document) for document in live)
