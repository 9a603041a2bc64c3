import logging
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Optional

from halfbeat.core.errors import IntegrityError, ValidationError

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"

# Song ids are uuid4 strings; keep the alphabet tight so nothing escapes the directory
AUDIO_FILENAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}\.m4s$")
THEME_IMAGE_FILENAME_RE = re.compile(r"^[0-9a-f]{64}\.[a-z0-9]{1,5}$")


def audio_filename(song_id: str) -> str:
    """``<song id>.m4s``, rejecting ids that could escape the audio directories."""
    if not song_id:
        raise ValidationError("song id must not be empty")
    filename = f"{song_id}.m4s"
    if not AUDIO_FILENAME_RE.match(filename):
        raise ValidationError(f"invalid song id: {song_id!r}")
    return filename


def part_path(path: Path) -> Path:
    """Temporary sibling used while a file is being written."""
    return path.with_name(path.name + PART_SUFFIX)


def remove_quietly(path: Path) -> None:
    """Delete a file, ignoring a missing one and logging anything else."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


def promote_part_file(tmp_path: Path, destination: Path, expected_size: Optional[int] = None) -> Path:
    """
    Move a fully written ``.part`` file into place.

    Verifies the on-disk size before and after the rename. On any failure
    the temporary file (and a half-promoted destination) is removed and an
    error is raised.

    Args:
        tmp_path: The written temporary file
        destination: Final path
        expected_size: Declared byte count, or None to skip size checks

    Returns:
        The destination path
    """
    try:
        actual = tmp_path.stat().st_size
    except OSError as e:
        remove_quietly(tmp_path)
        raise IntegrityError(f"file verification failed: {e}") from e
    if expected_size is not None and actual != expected_size:
        remove_quietly(tmp_path)
        raise IntegrityError(f"file size check failed: expected {expected_size} bytes, got {actual}")

    if destination.exists():
        # Windows refuses to rename over an existing file
        try:
            destination.unlink()
        except OSError as e:
            remove_quietly(tmp_path)
            raise IntegrityError(f"cannot overwrite existing file {destination.name}: {e}") from e

    try:
        os.rename(tmp_path, destination)
    except OSError as e:
        remove_quietly(tmp_path)
        raise IntegrityError(f"could not save {destination.name}: {e}") from e

    try:
        final = destination.stat().st_size
    except OSError as e:
        remove_quietly(destination)
        raise IntegrityError(f"final verification failed: {e}") from e
    if expected_size is not None and final != expected_size:
        remove_quietly(destination)
        raise IntegrityError(f"final size check failed: expected {expected_size} bytes, got {final}")
    return destination


def write_bytes_atomic(destination: Path, data: bytes, mode: Optional[int] = None) -> Path:
    """
    Write ``data`` through a ``.part`` file and rename it into place.

    ``mode`` restricts permissions before any byte is written.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp = part_path(destination)
    remove_quietly(tmp)
    try:
        with open(tmp, "wb") as f:
            if mode is not None:
                os.chmod(tmp, mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        remove_quietly(tmp)
        raise IntegrityError(f"write failed for {destination.name}: {e}") from e
    return promote_part_file(tmp, destination, len(data))


def directory_size(path: Path) -> int:
    """Total size in bytes of all files below ``path`` (0 if it doesn't exist)."""
    if not path.exists():
        return 0
    total = 0
    for entry in path.rglob("*"):
        if entry.is_file():
            total += entry.stat().st_size
    return total


def reveal_in_file_manager(path: Path, select: bool = False) -> None:
    """
    Open ``path`` in the system file manager.

    With ``select`` the file itself is highlighted where the platform
    supports it (macOS, Windows); Linux opens the containing directory.
    """
    if sys.platform == "darwin":
        cmd = ["open", "-R", str(path)] if select else ["open", str(path)]
    elif sys.platform.startswith("linux"):
        cmd = ["xdg-open", str(path.parent if select else path)]
    elif sys.platform == "win32":
        cmd = ["explorer", f"/select,{path}"] if select else ["explorer", str(path)]
    else:
        raise ValidationError(f"unsupported operating system: {sys.platform}")

    kwargs = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    try:
        subprocess.Popen(cmd, **kwargs)
    except OSError as e:
        raise ValidationError(f"could not open file manager: {e}") from e
