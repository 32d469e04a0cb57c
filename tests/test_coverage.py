"""Tests for the knowledge-coverage gate."""

from __future__ import annotations

from src.engine.coverage import (
    assemble_knowledge,
    filter_chunks,
    is_boilerplate,
    kb_covers_question,
)
from src.engine.models import KnowledgeChunk

_COOKIE = KnowledgeChunk("We use cookies to improve your experience. Accept all cookies.", 0.95)
_FOOTER = KnowledgeChunk("© 2025 Bright Smile Dental. All rights reserved. Privacy policy.", 0.9)


def _chunk(text: str, score: float) -> KnowledgeChunk:
    return KnowledgeChunk(text=text, score=score)


class TestFilterChunks:
    def test_boilerplate_is_detected(self):
        assert is_boilerplate(_COOKIE.text)
        assert is_boilerplate(_FOOTER.text)
        assert not is_boilerplate("A hygiene visit costs €75.")

    def test_drops_boilerplate_and_empty_chunks(self):
        kept = filter_chunks([_COOKIE, _chunk("   ", 0.8), _chunk("Whitening costs €350.", 0.4), _FOOTER])
        assert [c.text for c in kept] == ["Whitening costs €350."]

    def test_keeps_top_five_by_score(self):
        chunks = [_chunk(f"passage {i}", i / 10) for i in range(8)]
        kept = filter_chunks(chunks)
        assert [c.score for c in kept] == [0.7, 0.6, 0.5, 0.4, 0.3]


class TestAssembleKnowledge:
    def test_layout(self):
        text = assemble_knowledge("Family practice.", [_chunk("A", 0.5), _chunk("B", 0.4)])
        assert text.startswith("Business Description:\nFamily practice.\n")
        assert "Website & Knowledge Base Content:\nA\n\n---\n\nB" in text


class TestKbCoversQuestion:
    def test_only_boilerplate_is_not_covered(self):
        kept = filter_chunks([_COOKIE, _FOOTER])
        knowledge = assemble_knowledge("", kept)
        assert kept == []
        assert not kb_covers_question("how much is whitening?", knowledge, kept)

    def test_confident_long_chunks_cover(self):
        kept = [_chunk("x" * 450, 0.8)]
        assert kb_covers_question("zzz", assemble_knowledge("", kept), kept)

    def test_token_overlap_covers(self):
        kept = [_chunk("Whitening costs €350 for trays.", 0.3)]
        assert kb_covers_question("whitening costs?", assemble_knowledge("", kept), kept)

    def test_volume_covers(self):
        kept = [_chunk("y" * 210, 0.1)]
        assert kb_covers_question("implants", assemble_knowledge("", kept), kept)

    def test_short_unrelated_chunk_is_not_covered(self):
        kept = [_chunk("Parking on Market Lane.", 0.2)]
        assert not kb_covers_question("do you do veneers?", assemble_knowledge("", kept), kept)
