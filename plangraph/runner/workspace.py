# plangraph/runner/workspace.py
"""
Файловые артефакты шагов в рабочей директории.

WorkspaceSession создаётся на одно исполнение варианта:
- все пути относительны и не могут выйти за пределы корня;
- каждая первая запись в путь журналируется (прежнее содержимое или его отсутствие),
  чтобы при политике rollback откатить побочные эффекты упавшего варианта;
- write_file возвращает ссылку на артефакт {"type": "file", "path", "content"},
  path совпадает с тем, что реально записано.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Optional, Set, Union

from plangraph.utils.utils import file_asset

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


class WorkspaceSession:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._journal: Dict[str, Optional[bytes]] = {}
        self.written: Set[str] = set()

    def resolve(self, path: str) -> Path:
        """Абсолютный путь внутри корня. Бросает PermissionError при выходе за корень."""
        if not isinstance(path, str) or not path.strip():
            raise ValueError("Путь файла должен быть непустой строкой")
        candidate = Path(path)
        if candidate.is_absolute():
            raise PermissionError(f"Абсолютные пути запрещены: {path}")
        full = (self.root / candidate).resolve()
        try:
            full.relative_to(self.root)
        except ValueError:
            raise PermissionError(f"Путь выходит за пределы рабочей директории: {path}") from None
        return full

    def normalize(self, path: str) -> str:
        return self.resolve(path).relative_to(self.root).as_posix()

    # -----------------------------
    # Операции, доступные фрагменту
    # -----------------------------
    def write_file(self, path: str, content: str) -> dict:
        if not isinstance(content, str):
            raise TypeError(f"write_file ожидает str, получено {type(content).__name__}")
        full = self.resolve(path)
        rel = full.relative_to(self.root).as_posix()
        if rel not in self._journal:
            self._journal[rel] = full.read_bytes() if full.exists() else None
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content, encoding="utf-8")
        self.written.add(rel)
        LOG.debug("📝 Записан файл %s (%d символов)", rel, len(content))
        return file_asset(rel, content)

    def read_file(self, path: str) -> str:
        full = self.resolve(path)
        if not full.is_file():
            raise FileNotFoundError(f"Файл не найден: {path}")
        return full.read_text(encoding="utf-8")

    def file_exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def was_written(self, path: str) -> bool:
        try:
            return self.normalize(path) in self.written
        except (PermissionError, ValueError):
            return False

    # -----------------------------
    # Откат побочных эффектов
    # -----------------------------
    def rollback(self) -> int:
        """Восстановить файлы, записанные в этой сессии. Возвращает число восстановленных путей."""
        restored = 0
        for rel, previous in self._journal.items():
            full = self.root / rel
            if previous is None:
                if full.exists():
                    full.unlink()
            else:
                full.write_bytes(previous)
            restored += 1
        if restored:
            LOG.info("↩️ Откат побочных эффектов: восстановлено %d файлов", restored)
        self._journal.clear()
        self.written.clear()
        return restored
