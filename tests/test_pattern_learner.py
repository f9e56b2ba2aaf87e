"""
Tests for behavioural pattern observation, ranking and substring-based scoring.
"""

import time

import pytest

from semantic_recall.core.errors import ValidationError
from semantic_recall.core.schema import PatternRecord
from semantic_recall.learning.patterns import PatternLearner, matching_patterns, score_with_patterns

TABLE = "life_ceo_patterns"


@pytest.fixture
def learner(memory_store, embeddings):
    return PatternLearner(memory_store, embeddings, table=TABLE, initial_confidence=0.5, confidence_step=0.05)


def pattern(text, confidence):
    now = time.time()
    return PatternRecord(
        id=f"p_{text}", owner_id="u1", domain_id="life_ceo", pattern_text=text,
        frequency=1, confidence=confidence, first_seen=now, last_seen=now
    )


@pytest.mark.asyncio
async def test_first_observation_creates_record(learner, memory_store):
    record = await learner.observe("u1", "life_ceo", "morning workout")

    assert record.frequency == 1
    assert record.confidence == 0.5
    assert record.first_seen == record.last_seen
    assert await memory_store.count_rows(TABLE) == 1


@pytest.mark.asyncio
async def test_repeat_observation_reinforces(learner, memory_store):
    first = await learner.observe("u1", "life_ceo", "morning workout")
    second = await learner.observe("u1", "life_ceo", "morning workout")

    assert second.id == first.id
    assert second.frequency == 2
    assert second.confidence == pytest.approx(0.55)
    assert second.last_seen >= first.last_seen
    assert await memory_store.count_rows(TABLE) == 1

    stored = (await learner.get_patterns("u1", "life_ceo"))[0]
    assert stored.frequency == 2
    assert stored.confidence == pytest.approx(0.55)


@pytest.mark.asyncio
async def test_confidence_caps_at_one(learner):
    confidences = []
    for _ in range(25):
        record = await learner.observe("u1", "life_ceo", "evening jazz concert")
        confidences.append(record.confidence)

    assert max(confidences) == 1.0
    assert all(c <= 1.0 for c in confidences)
    assert confidences[10] == 1.0
    assert record.frequency == 25


@pytest.mark.asyncio
async def test_keys_are_owner_domain_and_text(learner, memory_store):
    await learner.observe("u1", "life_ceo", "morning workout")
    await learner.observe("u2", "life_ceo", "morning workout")
    await learner.observe("u1", "work", "morning workout")

    assert await memory_store.count_rows(TABLE) == 3
    assert len(await learner.get_patterns("u1", "life_ceo")) == 1


@pytest.mark.asyncio
async def test_observe_rejects_empty_values(learner):
    with pytest.raises(ValidationError):
        await learner.observe("u1", "life_ceo", "   ")
    with pytest.raises(ValidationError):
        await learner.observe("", "life_ceo", "morning workout")


@pytest.mark.asyncio
async def test_get_patterns_ranked_by_confidence(learner):
    await learner.observe("u1", "life_ceo", "morning workout")
    for _ in range(3):
        await learner.observe("u1", "life_ceo", "evening jazz concert")

    patterns = await learner.get_patterns("u1", "life_ceo")

    assert [p.pattern_text for p in patterns] == ["evening jazz concert", "morning workout"]
    assert [p.pattern_text for p in await learner.get_patterns("u1", "life_ceo", min_confidence=0.6)] == [
        "evening jazz concert"
    ]


def test_matching_is_case_insensitive_substring_above_half():
    patterns = [pattern("Jazz", 0.8), pattern("workout", 0.5), pattern("lisbon", 0.9)]

    matched = matching_patterns("Book tickets for the JAZZ night after my workout", patterns)

    # Exactly 0.5 is not enough
    assert [p.pattern_text for p in matched] == ["Jazz"]


def test_score_with_patterns_adds_weighted_confidence():
    patterns = [pattern("jazz", 0.8), pattern("concert", 0.6), pattern("workout", 0.9)]

    score = score_with_patterns(1.0, "jazz concert tonight", patterns, weight=0.1)

    assert score == pytest.approx(1.0 + 0.08 + 0.06)
    assert score_with_patterns(2.0, "nothing relevant", patterns) == 2.0


@pytest.mark.asyncio
async def test_bias_score_uses_stored_patterns(learner):
    await learner.observe("u1", "life_ceo", "jazz")
    assert await learner.bias_score("u1", "life_ceo", "jazz tonight", base_score=1.0) == 1.0

    await learner.observe("u1", "life_ceo", "jazz")
    assert await learner.bias_score("u1", "life_ceo", "jazz tonight", base_score=1.0) == pytest.approx(1.055)


@pytest.mark.asyncio
async def test_similar_patterns_by_embedding(learner):
    await learner.observe("u1", "life_ceo", "morning workout")
    await learner.observe("u1", "life_ceo", "evening jazz concert")
    await learner.observe("u2", "life_ceo", "jazz")

    results = await learner.similar_patterns("u1", "life_ceo", "jazz", limit=5, min_similarity=0.1)

    assert [(p.pattern_text, p.owner_id) for p, _ in results] == [("evening jazz concert", "u1")]
    assert results[0][1] == pytest.approx(1 / 3 ** 0.5, abs=1e-6)


@pytest.mark.asyncio
async def test_prune_removes_stale_patterns(learner):
    await learner.observe("u1", "life_ceo", "morning workout")

    assert await learner.prune("u1", "life_ceo", max_age_days=30) == 0

    future = time.time() + 31 * 86400
    assert await learner.prune("u1", "life_ceo", max_age_days=30, now=future) == 1
    assert await learner.get_patterns("u1", "life_ceo") == []


@pytest.mark.asyncio
async def test_forget_all_patterns_for_owner(learner):
    await learner.observe("u1", "life_ceo", "morning workout")
    await learner.observe("u1", "work", "standup")
    await learner.observe("u2", "life_ceo", "morning workout")

    assert await learner.forget_all("u1") == 2
    assert len(await learner.get_patterns("u2", "life_ceo")) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("owner_id", [None, "", "  "])
async def test_pattern_reads_require_owner(learner, memory_store, owner_id):
    await learner.observe("alice", "d", "jazz")
    await learner.observe("bob", "d", "jazz")

    with pytest.raises(ValidationError) as exc_info:
        await learner.get_patterns(owner_id, "d")
    assert exc_info.value.field == "owner_id"

    with pytest.raises(ValidationError):
        await learner.bias_score(owner_id, "d", "jazz tonight")
    with pytest.raises(ValidationError):
        await learner.similar_patterns(owner_id, "d", "jazz")
    with pytest.raises(ValidationError):
        await learner.prune(owner_id, "d", max_age_days=0, now=time.time() + 86400)

    assert await memory_store.count_rows(TABLE) == 2
