"""Tests for the hybrid semantic + keyword index."""

from __future__ import annotations

import os
import subprocess
import sys

import pytest

from mneme.memory.embedding import EmbeddingCache
from mneme.memory.longterm import LongTermStore
from mneme.memory.semantic import NAMESPACE, HybridIndex, IndexItem, fuse_scores, keyword_scores
from mneme.memory.storage import SQLiteDocumentStore
from mneme.memory.types import IndexSource, MemoryCategory, MemoryMessage, MemoryRole


@pytest.fixture
def long_term(vector_store, scripted_llm) -> LongTermStore:
    return LongTermStore(vector_store, llm=scripted_llm)


@pytest.fixture
def index(document_store: SQLiteDocumentStore, embedding_cache: EmbeddingCache, long_term) -> HybridIndex:
    return HybridIndex(document_store, embedding_cache, long_term)


class TestKeywordScores:
    """Tests for keyword_scores."""

    def test_fraction_of_words_matched(self) -> None:
        scores = keyword_scores("Gothenburg tea", ["User lives in Gothenburg", "User likes tea and Gothenburg"])

        assert scores == {0: 0.5, 1: 1.0}

    def test_short_words_ignored(self) -> None:
        """Test words of two characters or fewer never count."""
        assert keyword_scores("is in at", ["this is in it"]) == {}

    def test_substring_match(self) -> None:
        assert keyword_scores("live", ["User lives in Gothenburg"]) == {0: 1.0}

    def test_non_matching_texts_left_out(self) -> None:
        assert keyword_scores("gothenburg", ["User likes tea"]) == {}


class TestFuseScores:
    """Tests for fuse_scores."""

    def test_weighted_union(self) -> None:
        fused = fuse_scores({"a": 0.5, "b": 0.9}, {"a": 1.0, "c": 1.0}, min_score=0.0)

        assert dict(fused) == pytest.approx({"a": 0.65, "b": 0.63, "c": 0.3})
        assert [entry_id for entry_id, _ in fused] == ["a", "b", "c"]

    def test_min_score(self) -> None:
        fused = fuse_scores({"a": 0.5}, {"c": 1.0}, min_score=0.31)

        assert [entry_id for entry_id, _ in fused] == ["a"]

    def test_custom_weights(self) -> None:
        fused = fuse_scores({"a": 1.0}, {"a": 1.0}, min_score=0.0, semantic_weight=0.5, keyword_weight=0.5)

        assert fused == [("a", pytest.approx(1.0))]

    def test_deterministic(self) -> None:
        semantic = {"a": 0.4, "b": 0.8}
        keyword = {"b": 0.5}

        assert fuse_scores(semantic, keyword, 0.3) == fuse_scores(semantic, keyword, 0.3)

    def test_ties_keep_semantic_then_keyword_order(self) -> None:
        """Test equal scores rank semantic hits in given order, then keyword-only hits."""
        semantic = {f"lt_{i}": 0.5 for i in range(12)}
        keyword = {"kw_b": 1.0, "kw_a": 1.0}

        fused = fuse_scores(semantic, keyword, min_score=0.0, semantic_weight=0.6, keyword_weight=0.3)

        assert [entry_id for entry_id, _ in fused] == [f"lt_{i}" for i in range(12)] + ["kw_b", "kw_a"]

    def test_tie_order_independent_of_hash_seed(self) -> None:
        """Test tied results come out the same in processes with different hash seeds."""
        script = (
            "from mneme.memory.semantic import fuse_scores\n"
            "print([i for i, _ in fuse_scores({f'lt_{i}': 0.5 for i in range(12)}, {}, 0.0)[:5]])\n"
        )
        outputs = set()
        for seed in ("1", "2", "3"):
            result = subprocess.run(
                [sys.executable, "-c", script],
                capture_output=True,
                text=True,
                check=True,
                env={**os.environ, "PYTHONHASHSEED": seed},
            )
            outputs.add(result.stdout.strip())

        assert outputs == {"['lt_0', 'lt_1', 'lt_2', 'lt_3', 'lt_4']"}


class TestHybridIndexIndexing:
    """Tests for adding entries to the manifest."""

    @pytest.mark.asyncio
    async def test_index_messages(self, index: HybridIndex) -> None:
        messages = [
            MemoryMessage(role=MemoryRole.USER, content="I live in Gothenburg"),
            MemoryMessage(role=MemoryRole.ASSISTANT, content="   "),
        ]

        added = await index.index_messages("chat-1", messages)

        assert added == 1
        assert await index.stats("chat-1") == {"total": 1, "short_term_count": 1, "long_term_count": 0}

    @pytest.mark.asyncio
    async def test_idempotent_by_text(self, index: HybridIndex, fake_embeddings) -> None:
        """Test re-indexing the same text adds nothing and embeds nothing."""
        items = [IndexItem("I live in Gothenburg"), IndexItem("I live in Gothenburg"), IndexItem("I like tea")]

        assert await index.index("chat-1", items, IndexSource.SHORT_TERM) == 2
        embedded = fake_embeddings.texts_embedded
        assert await index.index("chat-1", [IndexItem("I like tea")], IndexSource.LONG_TERM) == 0
        assert fake_embeddings.texts_embedded == embedded

    @pytest.mark.asyncio
    async def test_index_entries_keeps_ids(self, index: HybridIndex, long_term: LongTermStore) -> None:
        entry = await long_term.add("chat-1", "User lives in Gothenburg")

        await index.index_entries("chat-1", [entry])
        results = await index.search("chat-1", "gothenburg")

        assert results[0].id == entry.id
        assert results[0].source == IndexSource.LONG_TERM

    @pytest.mark.asyncio
    async def test_embedding_failure_adds_nothing(self, index: HybridIndex, fake_embeddings) -> None:
        fake_embeddings.fail_with = RuntimeError("provider down")

        assert await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM) == 0

        fake_embeddings.fail_with = None
        assert (await index.stats("chat-1"))["total"] == 0

    @pytest.mark.asyncio
    async def test_embeddings_unavailable(self, index: HybridIndex, fake_embeddings) -> None:
        fake_embeddings.configured = False

        assert await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM) == 0

    @pytest.mark.asyncio
    async def test_manifest_persisted(
        self, index: HybridIndex, document_store: SQLiteDocumentStore, embedding_cache: EmbeddingCache
    ) -> None:
        await index.index("chat-1", [IndexItem("I live in Gothenburg", id="st_1")], IndexSource.SHORT_TERM)

        stored = await document_store.get(NAMESPACE, "chat-1")
        assert [e["id"] for e in stored["entries"]] == ["st_1"]

        reopened = HybridIndex(document_store, embedding_cache)
        assert (await reopened.stats("chat-1"))["short_term_count"] == 1


class TestHybridIndexSearch:
    """Tests for fused retrieval."""

    @pytest.mark.asyncio
    async def test_fused_score(self, index: HybridIndex) -> None:
        """Test a one-word query on a four-word fact scores 0.7 * 0.5 + 0.3 * 1."""
        await index.index(
            "chat-1",
            [IndexItem("User lives in Gothenburg", id="m1"), IndexItem("User likes tea", id="m2")],
            IndexSource.LONG_TERM,
        )

        results = await index.search("chat-1", "gothenburg")

        assert [r.id for r in results] == ["m1"]
        assert results[0].score == pytest.approx(0.65)
        assert results[0].content == "User lives in Gothenburg"

    @pytest.mark.asyncio
    async def test_source_filter(self, index: HybridIndex) -> None:
        await index.index("chat-1", [IndexItem("Gothenburg weather today")], IndexSource.SHORT_TERM)
        await index.index("chat-1", [IndexItem("User lives in Gothenburg")], IndexSource.LONG_TERM)

        results = await index.search("chat-1", "gothenburg", sources={IndexSource.LONG_TERM})

        assert [r.content for r in results] == ["User lives in Gothenburg"]

    @pytest.mark.asyncio
    async def test_max_results_and_order(self, index: HybridIndex) -> None:
        items = [IndexItem(f"Gothenburg note number {i}") for i in range(8)]
        items.append(IndexItem("Gothenburg"))
        await index.index("chat-1", items, IndexSource.SHORT_TERM)

        results = await index.search("chat-1", "gothenburg", max_results=3)

        assert len(results) == 3
        assert results[0].content == "Gothenburg"
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

    @pytest.mark.asyncio
    async def test_empty_manifest(self, index: HybridIndex) -> None:
        assert await index.search("chat-1", "anything") == []

    @pytest.mark.asyncio
    async def test_keyword_fallback_without_embeddings(
        self, index: HybridIndex, long_term: LongTermStore, fake_embeddings
    ) -> None:
        """Test long-term keyword matches are returned at a fixed score when embeddings are off."""
        await long_term.add("chat-1", "User lives in Gothenburg")
        await long_term.add("chat-1", "User likes tea", MemoryCategory.PREFERENCE)
        fake_embeddings.configured = False

        results = await index.search("chat-1", "gothenburg")

        assert [r.content for r in results] == ["User lives in Gothenburg"]
        assert results[0].score == 0.5
        assert results[0].source == IndexSource.LONG_TERM
        assert results[0].category == MemoryCategory.FACT

    @pytest.mark.asyncio
    async def test_keyword_fallback_on_embedding_error(
        self, index: HybridIndex, long_term: LongTermStore, fake_embeddings
    ) -> None:
        await long_term.add("chat-1", "User lives in Gothenburg")
        await index.index("chat-1", [IndexItem("User likes tea")], IndexSource.SHORT_TERM)
        fake_embeddings.fail_with = RuntimeError("provider down")

        results = await index.search("chat-1", "gothenburg")

        assert [(r.content, r.score) for r in results] == [("User lives in Gothenburg", 0.5)]

    @pytest.mark.asyncio
    async def test_keyword_fallback_short_term_only(self, index: HybridIndex, fake_embeddings) -> None:
        fake_embeddings.configured = False

        assert await index.search("chat-1", "gothenburg", sources={IndexSource.SHORT_TERM}) == []


class TestHybridIndexMaintenance:
    """Tests for removing entries."""

    @pytest.mark.asyncio
    async def test_remove_short_term(self, index: HybridIndex) -> None:
        await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM)
        await index.index("chat-1", [IndexItem("User likes tea", id="m1")], IndexSource.LONG_TERM)

        assert await index.remove_short_term("chat-1") == 1
        assert await index.stats("chat-1") == {"total": 1, "short_term_count": 0, "long_term_count": 1}

    @pytest.mark.asyncio
    async def test_removed_text_can_be_reindexed(self, index: HybridIndex) -> None:
        await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM)
        await index.remove_short_term("chat-1")

        assert await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM) == 1

    @pytest.mark.asyncio
    async def test_remove_entry(self, index: HybridIndex) -> None:
        await index.index("chat-1", [IndexItem("User likes tea", id="m1")], IndexSource.LONG_TERM)

        assert await index.remove_entry("chat-1", "m1") is True
        assert await index.remove_entry("chat-1", "m1") is False

    @pytest.mark.asyncio
    async def test_clear(self, index: HybridIndex) -> None:
        await index.index("chat-1", [IndexItem("I live in Gothenburg")], IndexSource.SHORT_TERM)
        await index.index("chat-1", [IndexItem("User likes tea")], IndexSource.LONG_TERM)

        await index.clear("chat-1", IndexSource.LONG_TERM)
        assert (await index.stats("chat-1"))["long_term_count"] == 0
        assert (await index.stats("chat-1"))["short_term_count"] == 1

        await index.clear("chat-1")
        assert (await index.stats("chat-1"))["total"] == 0
