"""Tests for the LLM agents and JSON extraction."""

import json

import pytest

from songreel.exceptions import ProviderRejection
from songreel.schemas.pipeline import GeneratedSong, SongPrompt
from songreel.services.agents import (
    JSON_OUTPUT_INSTRUCTIONS,
    SONG_CONCEPT_PROMPT,
    ImageConceptAgent,
    SongConceptAgent,
    SongSelectorAgent,
    extract_json,
    parse_llm_json,
)
from tests.support.fakes import FakeChatClient

MODEL = "anthropic/claude-3.5-sonnet"


def songs(*ids: str) -> list[GeneratedSong]:
    return [
        GeneratedSong(id=song_id, audio_url=f"https://cdn1.suno.ai/{song_id}.mp3", title=song_id, duration=180)
        for song_id in ids
    ]


class TestExtractJson:
    def test_raw_json(self):
        assert extract_json('  {"a": 1} ') == '{"a": 1}'

    def test_json_fence(self):
        assert extract_json('Here you go:\n```json\n{"a": 1}\n```\nEnjoy') == '{"a": 1}'

    def test_plain_fence_with_json(self):
        assert extract_json('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence_with_prose_falls_back_to_raw(self):
        reply = "```\nnot json\n```"
        assert extract_json(reply) == reply

    def test_parse_llm_json_invalid_raises_rejection(self):
        with pytest.raises(ProviderRejection, match="SongPrompt"):
            parse_llm_json('{"style": "jazz"}', SongPrompt)


class TestSongConceptAgent:
    @pytest.mark.asyncio
    async def test_returns_prompt_with_pinned_model(self):
        llm = FakeChatClient()
        llm.replies["song"] = json.dumps(
            {"prompt": "[Verse] rain", "style": "lo-fi", "title": "Rain", "instrumental": False, "model": "V3_5"}
        )
        agent = SongConceptAgent(llm, MODEL)

        result = await agent.run("a rainy sunday")

        assert result.model == "V5"
        assert result.title == "Rain"
        model, system_prompt, user_prompt = llm.calls[0]
        assert model == MODEL
        assert system_prompt == f"{SONG_CONCEPT_PROMPT}\n\n{JSON_OUTPUT_INSTRUCTIONS}"
        assert "a rainy sunday" in user_prompt

    @pytest.mark.asyncio
    async def test_long_prompt_is_truncated(self):
        llm = FakeChatClient()
        llm.replies["song"] = json.dumps({"prompt": "la " * 2000})

        result = await SongConceptAgent(llm, MODEL).run("x")

        assert len(result.prompt) == 3000


class TestSongSelectorAgent:
    @pytest.mark.asyncio
    async def test_picks_llm_choice(self):
        llm = FakeChatClient(selected_song_id="b")

        chosen = await SongSelectorAgent(llm, MODEL).run("concept", songs("a", "b"))

        assert chosen.id == "b"
        assert "id=a" in llm.calls[0][2]
        assert "id=b" in llm.calls[0][2]

    @pytest.mark.asyncio
    async def test_unknown_choice_is_rejection(self):
        llm = FakeChatClient(selected_song_id="zzz")

        with pytest.raises(ProviderRejection, match="zzz"):
            await SongSelectorAgent(llm, MODEL).run("concept", songs("a", "b"))

    @pytest.mark.asyncio
    async def test_no_candidates_is_rejection(self):
        with pytest.raises(ProviderRejection):
            await SongSelectorAgent(FakeChatClient(), MODEL).run("concept", [])


class TestImageConceptAgent:
    @pytest.mark.asyncio
    async def test_parses_fenced_reply(self):
        llm = FakeChatClient()

        image_prompt = await ImageConceptAgent(llm, MODEL).run(
            "a rainy sunday", {"title": "Sunday Rain", "style": "lo-fi"}
        )

        assert image_prompt.aspect_ratio == "16:9"
        assert image_prompt.model_dump()["aspect_ratio"] == "16:9"
        assert "Song title: Sunday Rain" in llm.calls[0][2]

    @pytest.mark.asyncio
    async def test_unsupported_aspect_ratio_is_rejection(self):
        llm = FakeChatClient()
        llm.replies["image"] = json.dumps({"prompt": "x", "aspectRatio": "21:9"})

        with pytest.raises(ProviderRejection):
            await ImageConceptAgent(llm, MODEL).run("concept", None)
