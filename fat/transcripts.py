"""Per-question conversation logs and ageing of old answer folders."""

import logging
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

RECENT_DIR = "recent"
ARCHIVE_DIR = "archive"
CANCELLED_MARKER = "CANCELLED"

_RECENT_AFTER = timedelta(days=7)
_ARCHIVE_AFTER = timedelta(days=30)


class TranscriptLog:
    """Raw prompt/response pairs for one question, one file per stage and agent.

    Write failures are logged and swallowed: a full disk must not fail a run.
    """

    def __init__(self, answers_dir: Path, question_ts: int) -> None:
        self.folder = answers_dir / str(question_ts)

    def _ensure_folder(self) -> None:
        self.folder.mkdir(parents=True, exist_ok=True)

    def record(self, stage: str, agent_name: str, prompt: str, response: str) -> Path | None:
        """Append one exchange to ``<stage>_<agent>.log``."""
        path = self.folder / f"{stage}_{_safe_name(agent_name)}.log"
        entry = f"[{int(time.time())}] Prompt: {prompt}\nResponse: {response}\n\n"
        try:
            self._ensure_folder()
            with path.open("a", encoding="utf-8") as f:
                f.write(entry)
        except OSError as exc:
            logger.warning("Failed to write transcript %s: %s", path, exc)
            return None
        return path

    def mark_cancelled(self, reason: str = "cancelled") -> Path | None:
        path = self.folder / CANCELLED_MARKER
        try:
            self._ensure_folder()
            path.write_text(f"{datetime.now().isoformat(timespec='seconds')} {reason}\n", encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write cancellation marker %s: %s", path, exc)
            return None
        logger.info("Marked %s as cancelled", self.folder)
        return path


def _safe_name(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)


def ensure_dirs(answers_dir: Path) -> None:
    """Create the answers, recent and archive directories if they don't exist."""
    (answers_dir / RECENT_DIR).mkdir(parents=True, exist_ok=True)
    (answers_dir / ARCHIVE_DIR).mkdir(parents=True, exist_ok=True)


def _candidates(directory: Path) -> list[Path]:
    """Question folders only; they are named by question timestamp."""
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_dir() and p.name.isdigit()
    )


def _move(src: Path, dest: Path) -> bool:
    if dest.exists():
        logger.warning("Destination already exists, skipping: %s -> %s", src, dest)
        return False
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dest))
    logger.info("Moved %s -> %s", src, dest)
    return True


def archive_old_folders(answers_dir: Path, now: datetime | None = None) -> list[tuple[Path, Path]]:
    """Age question folders by modification time.

    Folders in ``recent/`` older than a month go to ``archive/YYYY-MM/``;
    folders directly under ``answers_dir`` older than a week go to ``recent/``.

    Returns:
        (source, destination) for every folder moved.
    """
    now = now or datetime.now()
    ensure_dirs(answers_dir)
    moved: list[tuple[Path, Path]] = []

    recent = answers_dir / RECENT_DIR
    for folder in _candidates(recent):
        mtime = datetime.fromtimestamp(folder.stat().st_mtime)
        if now - mtime <= _ARCHIVE_AFTER:
            continue
        dest = answers_dir / ARCHIVE_DIR / mtime.strftime("%Y-%m") / folder.name
        try:
            if _move(folder, dest):
                moved.append((folder, dest))
        except OSError as exc:
            logger.error("Failed to archive %s: %s", folder, exc)

    for folder in _candidates(answers_dir):
        mtime = datetime.fromtimestamp(folder.stat().st_mtime)
        if now - mtime <= _RECENT_AFTER:
            continue
        dest = recent / folder.name
        try:
            if _move(folder, dest):
                moved.append((folder, dest))
        except OSError as exc:
            logger.error("Failed to move %s to recent: %s", folder, exc)

    return moved
