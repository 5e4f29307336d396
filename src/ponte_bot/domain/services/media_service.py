
"""Transcodificação de mídia com ffmpeg (processo externo, sem bloquear o loop).

- vídeo-nota (círculo do Telegram): recorte quadrado + limite de duração;
  se falhar, devolve o vídeo original.
- figurinha animada do Telegram → webp animado para o WhatsApp.
- figurinha → PNG estático (fallback quando o Telegram recusa a figurinha).
"""
from __future__ import annotations
import asyncio, shutil, tempfile
from pathlib import Path
from typing import List
from ...core.errors import MediaTranscodeError
from ...core.logging import get_logger

log = get_logger()

class MediaService:
    def __init__(self, ffmpeg_bin: str = "ffmpeg", temp_dir: str = "temp", *, video_note_size: int = 240,
                 video_note_max_s: int = 60, sticker_size: int = 512, timeout_s: float = 120.0):
        self.ffmpeg_bin = ffmpeg_bin
        self.temp_dir = temp_dir
        self.video_note_size = video_note_size
        self.video_note_max_s = video_note_max_s
        self.sticker_size = sticker_size
        self.timeout_s = timeout_s

    async def to_video_note(self, data: bytes) -> bytes:
        s = self.video_note_size
        args = [
            "-vf", f"scale={s}:{s}:force_original_aspect_ratio=increase,crop={s}:{s}",
            "-t", str(self.video_note_max_s),
            "-f", "mp4",
        ]
        try:
            return await self.transcode(data, ".mp4", "_note.mp4", args)
        except MediaTranscodeError as e:
            log.warning("video_note_conversion_failed", error=str(e))
            return data

    async def animated_sticker_to_webp(self, data: bytes, src_suffix: str = ".webm") -> bytes:
        s = self.sticker_size
        args = [
            "-vf", f"scale={s}:{s}:force_original_aspect_ratio=decrease,"
                   f"pad={s}:{s}:(ow-iw)/2:(oh-ih)/2:color=0x00000000",
            "-loop", "0", "-an", "-vsync", "0",
            "-f", "webp",
        ]
        return await self.transcode(data, src_suffix, ".webp", args)

    async def sticker_to_png(self, data: bytes) -> bytes:
        return await self.transcode(data, ".webp", ".png", ["-frames:v", "1", "-f", "image2"])

    async def transcode(self, data: bytes, src_suffix: str, dst_suffix: str, args: List[str]) -> bytes:
        """Roda `ffmpeg -y -i <src> <args> <dst>` em diretório temporário próprio."""
        if not data:
            raise MediaTranscodeError("entrada vazia")
        workdir = Path(await asyncio.to_thread(self._mkdtemp))
        src, dst = workdir / f"in{src_suffix}", workdir / f"out{dst_suffix}"
        try:
            await asyncio.to_thread(src.write_bytes, data)
            await self._run([self.ffmpeg_bin, "-y", "-loglevel", "error", "-i", str(src), *args, str(dst)])
            out = await asyncio.to_thread(dst.read_bytes)
        except FileNotFoundError as e:
            raise MediaTranscodeError(f"arquivo ausente: {e.filename}") from e
        finally:
            await asyncio.to_thread(shutil.rmtree, workdir, True)
        if not out:
            raise MediaTranscodeError("saída vazia")
        return out

    def _mkdtemp(self) -> str:
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        return tempfile.mkdtemp(prefix="media_", dir=self.temp_dir)

    async def _run(self, cmd: List[str]) -> None:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise MediaTranscodeError(f"ffmpeg excedeu {self.timeout_s}s")
        if proc.returncode != 0:
            tail = (err or b"").decode("utf-8", "replace").strip().splitlines()[-1:]
            raise MediaTranscodeError(f"ffmpeg saiu com {proc.returncode}: {' '.join(tail)}")
        log.debug("ffmpeg_done", cmd=cmd[-1])
