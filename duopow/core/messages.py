import logging
from pathlib import Path
from typing import Dict, Optional

import yaml

log = logging.getLogger(__name__)

DEFAULT_PATH = Path(__file__).with_name("messages.yaml")


class Messages:
    """Reply catalogue loaded from YAML, with an optional override file.

    Entries in the override replace the defaults key by key. Both files are
    re-read when their mtime changes.
    """

    def __init__(
        self,
        *,
        default_path: Path = DEFAULT_PATH,
        override_path: Optional[Path] = None,
    ) -> None:
        self.default_path = default_path
        self.override_path = override_path
        self._entries: Dict[str, str] = {}
        self._default_mtime: Optional[float] = None
        self._override_mtime: Optional[float] = None
        self._refresh()

    def _read(self, path: Optional[Path]) -> Dict[str, str]:
        if path is None or not path.exists():
            return {}
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read messages %s: %s", path, exc)
            return {}
        entries: Dict[str, str] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                if isinstance(value, str) and value.strip():
                    entries[str(key).strip().lower()] = value
        return entries

    @staticmethod
    def _mtime(path: Optional[Path]) -> Optional[float]:
        if path is None:
            return None
        try:
            return path.stat().st_mtime if path.exists() else None
        except OSError:
            return None

    def _refresh(self) -> None:
        default_mtime = self._mtime(self.default_path)
        override_mtime = self._mtime(self.override_path)
        if self._entries and (default_mtime, override_mtime) == (
            self._default_mtime,
            self._override_mtime,
        ):
            return
        self._default_mtime = default_mtime
        self._override_mtime = override_mtime
        merged = self._read(self.default_path)
        merged.update(self._read(self.override_path))
        if not merged:
            raise RuntimeError(f"no reply texts found in {self.default_path}")
        self._entries = merged

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, **values) -> str:
        self._refresh()
        template = self._entries.get(key)
        if template is None:
            log.error("missing reply text %r", key)
            return key
        try:
            return template.format(**values)
        except (KeyError, IndexError, ValueError) as exc:
            log.warning("reply text %r could not be formatted: %s", key, exc)
            return template
