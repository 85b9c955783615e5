"""Template sources consulted by the renderer before built-in defaults."""

import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

from notifier.domain.models import Channel, Template
from notifier.logging import get_logger
from notifier.persistence import Database, TemplateRepository

logger = get_logger(__name__, component="templates")

BUNDLED_TEMPLATE_DIR = Path(__file__).parent / "bundled"

# File suffix per channel
CHANNEL_SUFFIXES = {Channel.EMAIL.value: ".html", Channel.SMS.value: ".txt"}


class DatabaseTemplateSource:
    """Reads and writes the templates table, one short session per call."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, name: str, channel: str) -> Optional[Template]:
        """Stored template for (name, channel), or None.

        Raises:
            PersistenceError: If the lookup fails
        """
        with self.database.session() as session:
            return TemplateRepository(session).get_by_name(name, channel)

    def save(self, template: Template, now: datetime) -> Template:
        """Insert or replace a stored template; replacing bumps its version.

        Raises:
            PersistenceError: If the row cannot be written
        """
        with self.database.session() as session:
            saved = TemplateRepository(session).upsert(template, now)
        logger.info(
            f"Stored template {saved.name}/{saved.channel} v{saved.version}",
            extra={"event": "template.saved", "template": saved.name, "channel": saved.channel, "version": saved.version},
        )
        return saved


class FilesystemTemplateCache:
    """Template files from a directory, read once on first use.

    ``<name>.html`` files serve email and ``<name>.txt`` files serve SMS.
    Loading happens at most once even when several threads render at the
    same time; a missing directory yields an empty cache.
    """

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else BUNDLED_TEMPLATE_DIR
        self._templates: Dict[Tuple[str, str], str] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def get(self, name: str, channel: str) -> Optional[str]:
        self._ensure_loaded()
        return self._templates.get((name, channel))

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._templates)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            self._templates = self._load()
            self._loaded = True

    def _load(self) -> Dict[Tuple[str, str], str]:
        templates: Dict[Tuple[str, str], str] = {}
        if not self.directory.is_dir():
            logger.warning(
                f"Template directory not found: {self.directory}",
                extra={"event": "template.directory_missing", "directory": str(self.directory)},
            )
            return templates

        for channel, suffix in CHANNEL_SUFFIXES.items():
            for path in sorted(self.directory.glob(f"*{suffix}")):
                try:
                    templates[(path.stem, channel)] = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(
                        f"Skipping unreadable template file {path.name}: {e}",
                        extra={"event": "template.file_unreadable", "file": str(path), "error_type": type(e).__name__},
                    )

        logger.info(
            f"Loaded {len(templates)} template files",
            extra={
                "event": "template.files_loaded",
                "directory": str(self.directory),
                "count": len(templates),
            },
        )
        return templates
