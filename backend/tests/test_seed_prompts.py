"""Tests for the prompt seeding CLI command."""

import pytest

from vibra.cli.seed_prompts import DEFAULT_GENRES, PROMPT_TEMPLATES, parse_args, seed_prompts
from vibra.models.prompt import PromptCategory


@pytest.mark.asyncio
async def test_seed_creates_one_prompt_per_category(uow_factory):
    result = await seed_prompts(uow_factory, ["Rock", "Hip Hop"])

    assert len(result.created) == 8
    assert result.skipped == []

    async with await uow_factory() as uow:
        assert await uow.prompts.count() == 8
        assert await uow.prompts.list_genres() == ["Hip Hop", "Rock"]
        prompt = await uow.prompts.get_random_active("Hip Hop", PromptCategory.MOOD)

    assert "Hip Hop" in prompt.prompt_text
    assert prompt.tags == ["hip hop", "mood"]


@pytest.mark.asyncio
async def test_seed_is_idempotent(uow_factory, add_prompt):
    existing = await add_prompt("Rock", PromptCategory.BASE, prompt_text="Hand-written prompt")

    first = await seed_prompts(uow_factory, ["Rock"])
    second = await seed_prompts(uow_factory, ["Rock"])

    assert ("Rock", "base") in first.skipped
    assert len(first.created) == 3
    assert second.created == []
    assert len(second.skipped) == 4

    async with await uow_factory() as uow:
        assert await uow.prompts.count() == 4
        kept = await uow.prompts.get_by_id(existing.id)
    assert kept.prompt_text == "Hand-written prompt"


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(uow_factory):
    result = await seed_prompts(uow_factory, ["Jazz"], dry_run=True)

    assert len(result.created) == 4
    async with await uow_factory() as uow:
        assert await uow.prompts.count() == 0


def test_templates_cover_every_category():
    assert set(PROMPT_TEMPLATES) == set(PromptCategory)
    assert all(template("Rock").strip() for template in PROMPT_TEMPLATES.values())


def test_parse_args():
    args = parse_args(["Rock", "Jazz", "--dry-run"])

    assert args.genres == ["Rock", "Jazz"]
    assert args.dry_run is True
    assert parse_args([]).genres == []
    assert "Pop" in DEFAULT_GENRES
