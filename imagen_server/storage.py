from __future__ import annotations

import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .errors import FilesystemError
from .types import Artifact

PROMPT_FRAGMENT_LENGTH = 50
IMAGE_EXTENSION = "png"

_UNSAFE_PROMPT_CHARS = re.compile(r"[^a-zA-Z0-9]")
_TIMESTAMP_SEPARATORS = re.compile(r"[^0-9A-Za-z_-]")
_BYTE_UNITS = ("Bytes", "KB", "MB", "GB")


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def filename_timestamp(now: Optional[datetime] = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return _TIMESTAMP_SEPARATORS.sub("-", iso)


def sanitize_prompt(prompt: str) -> str:
    return _UNSAFE_PROMPT_CHARS.sub("_", prompt[:PROMPT_FRAGMENT_LENGTH])


def artifact_filename(prompt: str, model: str, index: int = 1, now: Optional[datetime] = None) -> str:
    """Return ``{model}_{timestamp}_{prompt fragment}_{index}.png``.

    Two calls in the same millisecond with the same inputs produce the same
    name; the later write replaces the earlier file.
    """
    return f"{model}_{filename_timestamp(now)}_{sanitize_prompt(prompt)}_{index}.{IMAGE_EXTENSION}"


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    exponent = min(int(math.floor(math.log(size, 1024))), len(_BYTE_UNITS) - 1)
    # log() can land just below an exact power of 1024
    if exponent + 1 < len(_BYTE_UNITS) and size >= 1024 ** (exponent + 1):
        exponent += 1
    value = round(size / 1024**exponent, 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_BYTE_UNITS[exponent]}"


_FILE_UMASK = _current_umask()


class ArtifactWriter:
    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)

    def resolve_dir(self) -> Path:
        if self.output_dir.is_absolute():
            return self.output_dir
        return Path.cwd() / self.output_dir

    def write(self, data: bytes, filename: str) -> Artifact:
        """Persist ``data`` under the output directory, replacing any file of the same name.

        The payload goes to a temporary sibling first and is moved into place
        with ``os.replace`` so readers never see a partially written image.
        """
        directory = self.resolve_dir()
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot create output directory {directory}: {exc}", path=directory) from exc

        target = directory / filename
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(dir=directory, prefix=".", suffix=".part", delete=False) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o666 & ~_FILE_UMASK)
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Could not remove partial file {}", tmp_name)
            raise FilesystemError(f"Cannot write image {target}: {exc}", path=target) from exc

        logger.debug("Wrote {} bytes to {}", len(data), target)
        return Artifact(path=target, size=len(data))

    def discard(self, artifacts: List[Artifact]) -> None:
        for artifact in artifacts:
            try:
                artifact.path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not remove {}: {}", artifact.path, exc)
