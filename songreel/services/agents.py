"""LLM agents used by the synchronous stages.

Three agents share one pattern: send a system prompt plus a user prompt to
the LLM, extract the JSON object from the reply (raw or inside a markdown
code fence), validate it with pydantic.

- SongConceptAgent: concept → SongPrompt (analyzing)
- SongSelectorAgent: concept + candidates → selected song ID (selecting_song)
- ImageConceptAgent: concept + song → ImagePrompt (generating_image)

A reply that cannot be parsed is a ProviderRejection: the provider answered,
but not with something usable.
"""

import json
import re
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from songreel.exceptions import ProviderRejection
from songreel.schemas.pipeline import GeneratedSong, ImagePrompt, SongPrompt, SongSelection
from songreel.utils.logging import get_logger

log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

JSON_OUTPUT_INSTRUCTIONS = "Respond with valid JSON only. No markdown, no explanation."

_JSON_FENCE = re.compile(r"```json\s*\n?(.*?)\n?```", re.DOTALL)
_ANY_FENCE = re.compile(r"```\s*\n?(.*?)\n?```", re.DOTALL)

SONG_CONCEPT_PROMPT = """You are a professional music producer creating prompts for Suno AI music generation.

Analyze the user's song concept and produce a complete generation prompt.

Output JSON in this exact format:
{
  "prompt": "full lyrics using [Verse], [Chorus], [Bridge], [Outro] tags, or a descriptive prompt for instrumentals (max 3000 chars)",
  "style": "genre, mood and instrumentation, e.g. 'Lo-fi hip hop with jazzy chords'",
  "title": "catchy 2-5 word title",
  "instrumental": false
}

Write lyrics in the language of the concept. Set instrumental to true only if
the concept explicitly asks for no vocals."""

SONG_SELECTOR_PROMPT = """You are a music curator. Select the best song from the candidates for the original concept.

Consider:
1. Title match with the concept theme
2. Duration (2-4 minutes is ideal for music videos)
3. Professional sounding titles indicate better quality

Output JSON:
{
  "selectedSongId": "id of chosen song",
  "reasoning": "brief explanation"
}"""

IMAGE_CONCEPT_PROMPT = """You are a visual artist. Create an image prompt for a music video background image.

The image should capture the mood of the song, work as a static background,
match the genre aesthetic and be appropriate for all audiences.

Output JSON:
{
  "prompt": "detailed image description (style, colors, composition, mood)",
  "aspectRatio": "16:9",
  "resolution": "1K"
}"""


class ChatClient(Protocol):
    async def chat(self, model: str, system_prompt: str, user_prompt: str) -> str: ...


def extract_json(response: str) -> str:
    """Extract the JSON document from an LLM reply.

    Checks a ```json fence first, then any fence whose content looks like
    JSON, then the raw reply.
    """
    match = _JSON_FENCE.search(response)
    if match:
        return match.group(1).strip()

    match = _ANY_FENCE.search(response)
    if match and _looks_like_json(match.group(1)):
        return match.group(1).strip()

    return response.strip()


def _looks_like_json(text: str) -> bool:
    text = text.strip()
    return (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    )


def parse_llm_json(response: str, model: type[ModelT]) -> ModelT:
    """Parse and validate an LLM reply into ``model``.

    Raises:
        ProviderRejection: Reply is not valid JSON or fails validation.
    """
    raw = extract_json(response)
    try:
        data: Any = json.loads(raw)
        return model.model_validate(data)
    except (ValueError, ValidationError) as e:
        log.warning(
            "llm_response_unparseable",
            model=model.__name__,
            error=str(e)[:200],
            response=response[:500],
        )
        raise ProviderRejection(f"LLM returned invalid {model.__name__}: {str(e)[:200]}") from e


class _Agent:
    system_prompt = ""

    def __init__(self, llm: ChatClient, model: str):
        self.llm = llm
        # Fallback for callers that do not pass the job's model
        self.model = model

    async def _ask(self, user_prompt: str, output: type[ModelT], model: str | None = None) -> ModelT:
        system_prompt = f"{self.system_prompt}\n\n{JSON_OUTPUT_INSTRUCTIONS}"
        response = await self.llm.chat(model or self.model, system_prompt, user_prompt)
        return parse_llm_json(response, output)


class SongConceptAgent(_Agent):
    """Turns a free-form concept into a Suno song prompt."""

    system_prompt = SONG_CONCEPT_PROMPT

    # Model pinned regardless of what the LLM suggests
    suno_model = "V5"

    async def run(self, concept: str, model: str | None = None) -> SongPrompt:
        song_prompt = await self._ask(f"Song concept:\n{concept}", SongPrompt, model)
        return song_prompt.model_copy(update={"model": self.suno_model})


class SongSelectorAgent(_Agent):
    """Chooses one song among generated candidates."""

    system_prompt = SONG_SELECTOR_PROMPT

    async def run(
        self, concept: str, songs: list[GeneratedSong], model: str | None = None
    ) -> GeneratedSong:
        """Return the chosen candidate.

        A single candidate is returned without calling the LLM.

        Raises:
            ProviderRejection: No candidates, or the LLM picked an unknown ID.
        """
        if not songs:
            raise ProviderRejection("no song candidates to select from")
        if len(songs) == 1:
            return songs[0]

        lines = [f"Original concept: {concept}", "", "Candidates:"]
        for song in songs:
            lines.append(
                f"- id={song.id} title={song.title!r} duration={song.duration:.0f}s"
            )
        selection = await self._ask("\n".join(lines), SongSelection, model)

        for song in songs:
            if song.id == selection.selected_song_id:
                log.info(
                    "song_selected",
                    song_id=song.id,
                    reasoning=selection.reasoning[:200],
                )
                return song

        raise ProviderRejection(
            f"selected song ID {selection.selected_song_id!r} not found in candidates"
        )


class ImageConceptAgent(_Agent):
    """Creates the background image prompt for the chosen song."""

    system_prompt = IMAGE_CONCEPT_PROMPT

    async def run(
        self, concept: str, song_prompt: dict[str, Any] | None, model: str | None = None
    ) -> ImagePrompt:
        song_prompt = song_prompt or {}
        user_prompt = (
            f"Song concept: {concept}\n"
            f"Song title: {song_prompt.get('title', '')}\n"
            f"Music style: {song_prompt.get('style', '')}"
        )
        return await self._ask(user_prompt, ImagePrompt, model)
