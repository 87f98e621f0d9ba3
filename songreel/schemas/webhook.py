"""Provider callback payload schemas.

Defines Pydantic models for validating the callbacks KIE delivers for Suno
and NanoBanana tasks. Both wrap their content in a ``{code, msg, data}``
envelope; Suno uses snake_case ``task_id`` inside ``data`` while NanoBanana
uses ``taskId``.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TASK_ID_MAX_LENGTH = 256


class SunoCallbackTrack(BaseModel):
    """One generated track in a Suno callback."""

    model_config = ConfigDict(extra="ignore")

    id: str
    audio_url: str = ""
    title: str = ""
    duration: float | None = None


class SunoCallbackData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    callback_type: Literal["text", "first", "complete", "error"] = Field(
        "complete", alias="callbackType"
    )
    task_id: str = Field(..., min_length=1, max_length=TASK_ID_MAX_LENGTH)
    data: list[SunoCallbackTrack] | None = None
    error_message: str | None = Field(None, alias="errorMessage")


class SunoCallbackPayload(BaseModel):
    """Suno generation callback.

    ``callbackType`` progresses text → first → complete. Only ``complete``
    carries the final set of tracks; a ``code`` other than 200 is a failure.
    """

    model_config = ConfigDict(extra="ignore")

    code: int
    msg: str = ""
    data: SunoCallbackData

    @property
    def is_partial(self) -> bool:
        return self.code == 200 and self.data.callback_type in ("text", "first")

    @property
    def is_failure(self) -> bool:
        return self.code != 200 or self.data.callback_type == "error"


class NanoCallbackData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    task_id: str = Field(..., alias="taskId", min_length=1, max_length=TASK_ID_MAX_LENGTH)
    model: str | None = None
    state: str
    result_json: str | None = Field(None, alias="resultJson")
    fail_code: str | None = Field(None, alias="failCode")
    fail_msg: str | None = Field(None, alias="failMsg")

    def as_record(self) -> dict[str, Any]:
        """Return the camelCase record shape shared with ``recordInfo`` polling."""
        return self.model_dump(by_alias=True)


class NanoCallbackPayload(BaseModel):
    """NanoBanana task callback (same record shape as ``recordInfo``)."""

    model_config = ConfigDict(extra="ignore")

    code: int
    message: str = ""
    data: NanoCallbackData
