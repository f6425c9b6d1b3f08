"""Tests for cosine retrieval with locality bonuses."""

from __future__ import annotations

import functools
from unittest.mock import patch

import httpx
import pytest

from config import embed_text
from errors import QuotaExceeded, TransportError
from retriever import cosine_sim, locality_bonus, retrieve_similar


class TestCosineSim:
    def test_identical_and_orthogonal(self):
        assert cosine_sim([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_sim([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_sim([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_uses_common_prefix(self):
        assert cosine_sim([1.0, 0.0, 5.0], [1.0, 0.0]) == pytest.approx(1.0)

    def test_empty(self):
        assert cosine_sim([], [1.0]) == 0.0


class TestLocalityBonus:
    def test_same_file_beats_same_dir_beats_elsewhere(self):
        same = locality_bonus("src/a.ts", "src/a.ts")
        sibling = locality_bonus("src/b.ts", "src/a.ts")
        far = locality_bonus("lib/c.ts", "src/a.ts")
        assert same > sibling > far == 0.0


class TestRetrieveSimilar:
    def test_ranks_by_similarity_plus_locality(self, sample_index, fake_embed):
        results = retrieve_similar(
            sample_index, "query", "src/api/client.ts", 4, fake_embed(default=[1.0, 0.0, 0.0])
        )
        assert [r.symbol_name for r in results] == ["same", "other", "near", "far"]

    def test_returns_at_most_k(self, sample_index, fake_embed):
        results = retrieve_similar(sample_index, "q", "src/api/client.ts", 2, fake_embed())
        assert len(results) == 2

    def test_projection_has_no_embedding(self, sample_index, fake_embed):
        (top,) = retrieve_similar(sample_index, "q", "src/api/client.ts", 1, fake_embed())
        assert not hasattr(top, "embedding")
        assert top.snippet == "function same() {}"

    def test_quota_error_fails_open(self, sample_index, fake_embed):
        embed = fake_embed(error=QuotaExceeded("429"))
        assert retrieve_similar(sample_index, "q", "a.ts", 3, embed) == []

    def test_transport_error_fails_open(self, sample_index, fake_embed):
        embed = fake_embed(error=TransportError("500"))
        assert retrieve_similar(sample_index, "q", "a.ts", 3, embed) == []

    def test_short_circuits_without_embedding(self, sample_index, fake_embed):
        embed = fake_embed()
        assert retrieve_similar(None, "q", "a.ts", 3, embed) == []
        assert retrieve_similar(sample_index, "q", "a.ts", 0, embed) == []
        assert embed.texts == []

    def test_embedding_timeout_fails_open(self, sample_index):
        embed = functools.partial(embed_text, api_key="test-key")
        with patch("config._embed", side_effect=httpx.ReadTimeout("timed out")):
            assert retrieve_similar(sample_index, "q", "a.ts", 3, embed) == []
