"""Media download, normalization and upload in both directions.

Every transfer gets its own scratch directory under the temp root which is
removed on every exit path. Any failure past the caller's hand-off comes
back as ``MediaError``.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import json
import logging
import mimetypes
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from PIL import Image, ImageOps

from core.config import RetryConfig
from core.errors import BridgeError, MediaError
from core.events import (
    AudioContent,
    DocumentContent,
    ImageContent,
    MediaKind,
    OutgoingContent,
    StickerContent,
    VideoContent,
)
from core.ports import DestinationClientPort, SourceClientPort
from core.retry import call_with_retry

LOGGER = logging.getLogger(__name__)

STICKER_SIZE = 512
VIDEO_NOTE_MAX_SECONDS = 60
VOICE_MIMETYPE = "audio/ogg; codecs=opus"
DEFAULT_AUDIO_MIMETYPE = "audio/mpeg"
DEFAULT_DOCUMENT_MIMETYPE = "application/octet-stream"
STICKER_FALLBACK_CAPTION = "Sticker"
SOURCE_STICKER_FALLBACK_CAPTION = "Sticker (fallback)"

_EXTENSIONS = {
    MediaKind.IMAGE: ".jpg",
    MediaKind.STICKER: ".webp",
    MediaKind.VIDEO: ".mp4",
    MediaKind.VIDEO_NOTE: ".mp4",
    MediaKind.ANIMATION: ".mp4",
    MediaKind.AUDIO: ".mp3",
    MediaKind.VOICE: ".ogg",
    MediaKind.DOCUMENT: "",
}


@dataclass(frozen=True)
class MediaRequest:
    """One media payload to move, plus where it goes.

    ``thread_id`` is the target for source-to-destination transfers and
    ``conversation_id`` for the opposite direction.
    """

    kind: MediaKind
    ref: Any
    caption: str = ""
    file_name: Optional[str] = None
    mimetype: Optional[str] = None
    is_voice: bool = False
    gif_playback: bool = False
    is_animated: bool = False
    spoiler: bool = False
    duration: Optional[int] = None
    title: Optional[str] = None
    thread_id: Optional[int] = None
    conversation_id: Optional[str] = None
    quoted_id: Optional[str] = None


@dataclass(frozen=True)
class MediaResult:
    artifact_id: Union[int, str]
    delivered_kind: MediaKind
    fallback: bool = False


@dataclass(frozen=True)
class VideoInfo:
    width: int
    height: int
    duration: float

    @property
    def is_square(self) -> bool:
        return self.width > 0 and self.width == self.height


VideoProbe = Callable[[str], Awaitable[Optional[VideoInfo]]]


def fit_square(data: bytes, size: int = STICKER_SIZE, fmt: str = "PNG") -> bytes:
    """Scale into a size x size transparent canvas, keeping the aspect ratio.

    Animated inputs contribute their first frame.
    """

    with Image.open(io.BytesIO(data)) as source:
        image = ImageOps.contain(source.convert("RGBA"), (size, size))
    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    canvas.paste(image, ((size - image.width) // 2, (size - image.height) // 2))
    output = io.BytesIO()
    if fmt.upper() == "WEBP":
        canvas.save(output, format="WEBP", lossless=True, quality=100)
    else:
        canvas.save(output, format=fmt)
    return output.getvalue()


async def probe_video(path: str) -> Optional[VideoInfo]:
    """Read frame size and duration with ffprobe; None when unreadable."""

    try:
        process = await asyncio.create_subprocess_exec(
            "ffprobe",
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height:format=duration",
            "-of",
            "json",
            path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as exc:
        LOGGER.warning("ffprobe unavailable: %s", exc)
        return None
    if process.returncode != 0:
        LOGGER.debug("ffprobe failed for %s: %s", path, stderr.decode(errors="replace").strip())
        return None
    try:
        payload = json.loads(stdout)
        stream = payload["streams"][0]
        return VideoInfo(
            width=int(stream["width"]),
            height=int(stream["height"]),
            duration=float(payload.get("format", {}).get("duration", 0.0)),
        )
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        LOGGER.debug("Unreadable ffprobe output for %s: %s", path, exc)
        return None


def guess_mimetype(file_name: Optional[str], default: str) -> str:
    if not file_name:
        return default
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or default


class MediaPipeline:
    """Download -> normalize -> upload, with scoped temp artifacts."""

    def __init__(
        self,
        source: SourceClientPort,
        destination: DestinationClientPort,
        channel_id: int,
        temp_dir: str = "temp",
        max_file_bytes: int = 50 * 1024 * 1024,
        retry: RetryConfig = RetryConfig(),
        probe: VideoProbe = probe_video,
    ) -> None:
        self._source = source
        self._destination = destination
        self._channel_id = channel_id
        self._temp_root = Path(temp_dir)
        self._max_file_bytes = max_file_bytes
        self._retry = retry
        self._probe = probe

    @property
    def temp_root(self) -> Path:
        return self._temp_root

    async def transfer(self, request: MediaRequest, source_to_destination: bool) -> MediaResult:
        """Move one payload across; raises MediaError on any failure."""

        try:
            if source_to_destination:
                if request.thread_id is None:
                    raise MediaError("No destination thread for media transfer")
                data = await call_with_retry(
                    lambda: self._source.download_media(request.ref),
                    self._retry,
                    f"download {request.kind.value}",
                )
                self._check_size(data)
                with self._workspace() as workdir:
                    return await self._to_destination(request, data, workdir)
            if request.conversation_id is None:
                raise MediaError("No source conversation for media transfer")
            data = await call_with_retry(
                lambda: self._destination.get_file_bytes(request.ref),
                self._retry,
                f"download {request.kind.value}",
            )
            self._check_size(data)
            return await self._to_source(request, data)
        except MediaError:
            raise
        except Exception as exc:
            raise MediaError(f"{request.kind.value} transfer failed: {exc}") from exc

    def purge(self) -> int:
        """Remove every leftover artifact under the temp root."""

        if not self._temp_root.exists():
            return 0
        removed = 0
        for entry in self._temp_root.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                with contextlib.suppress(OSError):
                    entry.unlink()
            removed += 1
        if removed:
            LOGGER.info("Purged %s temp artifacts from %s", removed, self._temp_root)
        return removed

    def _check_size(self, data: bytes) -> None:
        if not data:
            raise MediaError("Downloaded media is empty")
        if len(data) > self._max_file_bytes:
            raise MediaError(f"Media of {len(data)} bytes exceeds the {self._max_file_bytes} byte limit")

    @contextlib.contextmanager
    def _workspace(self) -> Iterator[Path]:
        self._temp_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="media-", dir=self._temp_root))
        try:
            yield workdir
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    @staticmethod
    async def _write(path: Path, data: bytes) -> str:
        await asyncio.to_thread(path.write_bytes, data)
        return str(path)

    def _file_name(self, request: MediaRequest) -> str:
        if request.file_name:
            return os.path.basename(request.file_name)
        return f"{request.kind.value}{_EXTENSIONS[request.kind]}"

    async def _to_destination(self, request: MediaRequest, data: bytes, workdir: Path) -> MediaResult:
        channel, thread = self._channel_id, request.thread_id
        kind = request.kind
        path = await self._write(workdir / self._file_name(request), data)

        if kind is MediaKind.STICKER:
            try:
                message_id = await self._destination.send_sticker(channel, thread, path)
                return MediaResult(message_id, MediaKind.STICKER)
            except BridgeError as exc:
                LOGGER.debug("Native sticker rejected, sending as image: %s", exc)
            png = await asyncio.to_thread(fit_square, data, STICKER_SIZE, "PNG")
            png_path = await self._write(workdir / "sticker.png", png)
            caption = request.caption or STICKER_FALLBACK_CAPTION
            message_id = await self._destination.send_photo(channel, thread, png_path, caption=caption)
            return MediaResult(message_id, MediaKind.IMAGE, fallback=True)

        if kind is MediaKind.IMAGE:
            message_id = await self._destination.send_photo(channel, thread, path, caption=request.caption)
            return MediaResult(message_id, kind)

        if kind is MediaKind.VIDEO_NOTE:
            info = await self._probe(path)
            if info is not None and info.is_square and info.duration <= VIDEO_NOTE_MAX_SECONDS:
                message_id = await self._destination.send_video_note(
                    channel, thread, path, duration=request.duration or int(info.duration)
                )
                if request.caption:
                    # Video notes carry no caption; it follows as a reply.
                    try:
                        await self._destination.send_text(channel, thread, request.caption, reply_to=message_id)
                    except BridgeError as exc:
                        LOGGER.warning("Could not post video note caption: %s", exc)
                return MediaResult(message_id, kind)
            LOGGER.info("Video note failed validation (%s), sending as regular video", info)
            message_id = await self._destination.send_video(channel, thread, path, caption=request.caption)
            return MediaResult(message_id, MediaKind.VIDEO, fallback=True)

        if kind in (MediaKind.VIDEO, MediaKind.ANIMATION):
            animation = kind is MediaKind.ANIMATION or request.gif_playback
            message_id = await self._destination.send_video(
                channel, thread, path, caption=request.caption, animation=animation
            )
            return MediaResult(message_id, MediaKind.ANIMATION if animation else MediaKind.VIDEO)

        if kind is MediaKind.VOICE or (kind is MediaKind.AUDIO and request.is_voice):
            message_id = await self._destination.send_voice(channel, thread, path, caption=request.caption)
            return MediaResult(message_id, MediaKind.VOICE)

        if kind is MediaKind.AUDIO:
            message_id = await self._destination.send_audio(
                channel,
                thread,
                path,
                caption=request.caption,
                title=request.title or "Audio",
                mimetype=request.mimetype or guess_mimetype(path, DEFAULT_AUDIO_MIMETYPE),
            )
            return MediaResult(message_id, kind)

        file_name = self._file_name(request)
        message_id = await self._destination.send_document(
            channel,
            thread,
            path,
            caption=request.caption,
            file_name=file_name,
            mimetype=request.mimetype or guess_mimetype(file_name, DEFAULT_DOCUMENT_MIMETYPE),
        )
        return MediaResult(message_id, MediaKind.DOCUMENT)

    async def _to_source(self, request: MediaRequest, data: bytes) -> MediaResult:
        kind = request.kind
        fallback = False
        delivered = kind
        content: OutgoingContent

        if kind is MediaKind.IMAGE:
            content = ImageContent(data, request.caption, view_once=request.spoiler, quoted_id=request.quoted_id)
        elif kind is MediaKind.STICKER:
            try:
                webp = await asyncio.to_thread(fit_square, data, STICKER_SIZE, "WEBP")
                content = StickerContent(webp, is_animated=request.is_animated)
            except Exception as exc:
                LOGGER.warning("Sticker conversion failed, sending as image: %s", exc)
                content = ImageContent(data, request.caption or SOURCE_STICKER_FALLBACK_CAPTION)
                delivered, fallback = MediaKind.IMAGE, True
        elif kind in (MediaKind.VIDEO, MediaKind.VIDEO_NOTE, MediaKind.ANIMATION):
            content = VideoContent(
                data,
                request.caption,
                ptv=kind is MediaKind.VIDEO_NOTE,
                gif_playback=kind is MediaKind.ANIMATION or request.gif_playback,
                view_once=request.spoiler,
                quoted_id=request.quoted_id,
            )
        elif kind is MediaKind.VOICE or (kind is MediaKind.AUDIO and request.is_voice):
            content = AudioContent(data, VOICE_MIMETYPE, ptt=True, quoted_id=request.quoted_id)
            delivered = MediaKind.VOICE
        elif kind is MediaKind.AUDIO:
            file_name = self._file_name(request)
            content = AudioContent(
                data,
                request.mimetype or guess_mimetype(file_name, DEFAULT_AUDIO_MIMETYPE),
                file_name=file_name,
                quoted_id=request.quoted_id,
            )
        else:
            file_name = self._file_name(request)
            content = DocumentContent(
                data,
                file_name,
                request.mimetype or guess_mimetype(file_name, DEFAULT_DOCUMENT_MIMETYPE),
                request.caption,
                quoted_id=request.quoted_id,
            )

        sent = await self._source.send_message(request.conversation_id, content)
        return MediaResult(sent.id, delivered, fallback)
