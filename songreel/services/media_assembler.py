"""Media Assembler: turn a song and a cover image into an mp4.

The assembler is a single blocking capability from the pipeline's point of
view: ``assemble(audio_url, image_url, job_id) -> (artifact_path, duration)``.
It downloads both assets into a per-job working directory, loops the still
image over the audio with ffmpeg, and measures the result with ffprobe.

Error Mapping:
    - download failure / timeout: TransportError (stage is retried)
    - rejected asset URL, ffmpeg non-zero exit: MediaAssemblyError / ProviderRejection
      (stage fails)
"""

import shutil
from pathlib import Path

import httpx

from songreel.exceptions import MediaAssemblyError, ProviderRejection, TransportError
from songreel.utils.cli_wrapper import CommandError, run_command
from songreel.utils.logging import get_logger
from songreel.utils.url_validator import URLValidator

log = get_logger(__name__)

OUTPUT_FILENAME = "output.mp4"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def build_ffmpeg_command(image_path: Path, audio_path: Path, output_path: Path) -> list[str]:
    """Build the still-image music video ffmpeg command."""
    return [
        "ffmpeg",
        "-loop", "1",
        "-i", str(image_path),
        "-i", str(audio_path),
        "-c:v", "libx264",
        "-tune", "stillimage",
        "-c:a", "aac",
        "-b:a", "192k",
        "-pix_fmt", "yuv420p",
        "-shortest",
        "-y",
        str(output_path),
    ]


def build_ffprobe_command(media_path: Path) -> list[str]:
    return [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(media_path),
    ]


class MediaAssembler:
    """Downloads assets and assembles the final video with ffmpeg.

    Args:
        workspace_dir: Root scratch directory; each job gets ``<root>/<job_id>``.
        url_validator: Guard applied to both asset URLs before download.
        http_client: Client used for downloads (created if omitted).
        ffmpeg_timeout: Seconds allowed for the ffmpeg run.
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        url_validator: URLValidator,
        http_client: httpx.AsyncClient | None = None,
        ffmpeg_timeout: float = 600,
    ):
        self.workspace_dir = Path(workspace_dir)
        self.url_validator = url_validator
        self.http_client = http_client or httpx.AsyncClient(timeout=120.0, follow_redirects=False)
        self.ffmpeg_timeout = ffmpeg_timeout

    def job_dir(self, job_id: object) -> Path:
        return self.workspace_dir / str(job_id)

    async def assemble(self, audio_url: str, image_url: str, job_id: object) -> tuple[Path, float]:
        """Produce ``<workspace>/<job_id>/output.mp4`` and return it with its duration."""
        work_dir = self.job_dir(job_id)
        work_dir.mkdir(parents=True, exist_ok=True)

        audio_path = work_dir / "audio.mp3"
        image_path = work_dir / "image.png"
        output_path = work_dir / OUTPUT_FILENAME

        await self.download(audio_url, audio_path)
        await self.download(image_url, image_path)

        try:
            await run_command(
                build_ffmpeg_command(image_path, audio_path, output_path),
                timeout=self.ffmpeg_timeout,
            )
        except TimeoutError as e:
            raise TransportError(f"ffmpeg timed out after {self.ffmpeg_timeout}s") from e
        except CommandError as e:
            raise MediaAssemblyError(f"ffmpeg failed (exit {e.exit_code}): {e.stderr[-300:]}") from e

        duration = await self.read_duration(output_path)

        log.info(
            "media_assembled",
            job_id=str(job_id),
            output_path=str(output_path),
            duration_seconds=duration,
        )
        return output_path, duration

    async def download(self, url: str, destination: Path) -> None:
        """Stream ``url`` to ``destination`` after URL validation."""
        try:
            self.url_validator.validate(url)
        except ValueError as e:
            raise ProviderRejection(f"asset URL rejected: {e}") from e

        try:
            async with self.http_client.stream("GET", url) as response:
                response.raise_for_status()
                with destination.open("wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"download failed ({e.response.status_code}): {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise TransportError(f"download failed: {type(e).__name__}: {url}") from e

    async def read_duration(self, media_path: Path) -> float:
        """Return media duration in seconds (0.0 if ffprobe output is unparseable)."""
        try:
            result = await run_command(build_ffprobe_command(media_path), timeout=60)
        except CommandError as e:
            raise MediaAssemblyError(f"ffprobe failed (exit {e.exit_code})") from e

        try:
            return float(result.stdout.strip())
        except ValueError:
            log.warning("ffprobe_unparseable_duration", output=result.stdout[:100])
            return 0.0

    def cleanup(self, job_id: object) -> None:
        """Remove a job's working directory."""
        shutil.rmtree(self.job_dir(job_id), ignore_errors=True)

    async def close(self) -> None:
        await self.http_client.aclose()
