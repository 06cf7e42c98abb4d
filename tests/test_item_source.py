from __future__ import annotations

import logging

import pytest

from symmetry_trainer.catalog import LEVELS, get_level
from symmetry_trainer.item_source import BankItemSource, GeneratedItemSource, SeededRng, pick_distinct
from symmetry_trainer.models import Item


def _bank() -> list[Item]:
    truths = ["632", "442", "333", "2222", "*632", "22x", "o"] * 3
    return [Item(id=f"b{n}", truth=t) for n, t in enumerate(truths)]


def test_bank_source_filters_to_allowed_categories() -> None:
    level = get_level("L1-rotate")
    assert level is not None
    items = BankItemSource(_bank(), seed=1).select_items(level, options={})
    assert len(items) == level.pool_size
    assert {i.truth for i in items} <= set(level.allowed)
    assert len({i.id for i in items}) == len(items)


def test_bank_source_normalizes_ascii_glide_labels() -> None:
    level = get_level("L4-glide")
    assert level is not None
    items = BankItemSource(_bank(), seed=1).select_items(level, options={})
    assert [i.id for i in items] == ["b5", "b12", "b19"]


def test_bank_source_same_seed_same_selection() -> None:
    level = get_level("L1-rotate")
    assert level is not None
    a = BankItemSource(_bank(), seed=42).select_items(level, options={})
    b = BankItemSource(_bank(), seed=42).select_items(level, options={})
    assert [i.id for i in a] == [i.id for i in b]


def test_bank_source_without_matches_warns_and_returns_empty(caplog: pytest.LogCaptureFixture) -> None:
    level = get_level("L3-mixed")
    assert level is not None
    with caplog.at_level(logging.WARNING, logger="symmetry_trainer.item_source"):
        assert BankItemSource(_bank(), seed=1).select_items(level, options={}) == []
    assert any("L3-mixed" in r.getMessage() for r in caplog.records)


def test_pick_distinct_keeps_order_when_pool_is_small() -> None:
    assert pick_distinct([1, 2, 3], 5, SeededRng(0)) == [1, 2, 3]
    picked = pick_distinct(list(range(20)), 5, SeededRng(0))
    assert len(set(picked)) == 5


@pytest.mark.parametrize("level", LEVELS, ids=lambda lvl: lvl.id)
def test_generated_source_cycles_allowed_categories(level) -> None:
    items = GeneratedItemSource(seed=9).select_items(level, options={})
    assert len(items) == level.pool_size
    assert {i.truth for i in items} == set(level.allowed)
    assert len({i.id for i in items}) == len(items)
    assert all(i.overlay is not None and i.overlay.text_cue for i in items)
    assert all(i.content_ref == f"orb://{i.truth}" for i in items)


def test_generated_source_is_deterministic_per_seed() -> None:
    level = LEVELS[0]
    a = GeneratedItemSource(seed=7).select_items(level, options={})
    b = GeneratedItemSource(seed=7).select_items(level, options={})
    assert a == b
