from __future__ import annotations

from pathlib import Path

from sorter_stack.l1_drivers.link import ScriptSourceUnavailable


class FileScriptSource:
    """Loads robot scripts from a directory; the identifier is the file name."""

    def __init__(self, script_dir: str | Path) -> None:
        self._dir = Path(script_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def load(self, script_id: str) -> bytes:
        path = (self._dir / script_id).resolve()
        if self._dir.resolve() not in path.parents:
            raise ScriptSourceUnavailable(script_id, f"script {script_id!r} is outside {self._dir}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise ScriptSourceUnavailable(script_id, f"cannot read script {path}: {e}") from e
