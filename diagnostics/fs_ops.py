from __future__ import annotations

import os
import shutil
import stat
import sys
import threading
from pathlib import Path
from typing import Callable


def safe_rmtree(path: Path) -> None:
    """Remove a tree with Windows-friendly permission handling."""
    path = Path(path)
    if not path.exists():
        return
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_handle_remove_exc)
    else:
        shutil.rmtree(path, onerror=_handle_remove_error)


def ensure_parent(path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_bytes(path: Path, data: bytes) -> int:
    """Write ``data`` to ``path`` via a sibling temp file, creating intermediate directories."""
    target = ensure_parent(path)
    partial = target.with_name(f"{target.name}.{threading.get_ident()}.part")
    try:
        partial.write_bytes(data)
        os.replace(partial, target)
    finally:
        if partial.exists():
            partial.unlink()
    return len(data)


def is_within(path: Path, root: Path) -> bool:
    try:
        Path(path).resolve().relative_to(Path(root).resolve())
    except ValueError:
        return False
    return True


def _handle_remove_error(func: Callable, path: str, exc_info) -> None:
    _handle_remove_exc(func, path, exc_info[1])


def _handle_remove_exc(func: Callable, path: str, exc: BaseException) -> None:
    if isinstance(exc, PermissionError) or getattr(exc, "winerror", None) == 5:
        _make_writable(Path(path))
        try:
            func(path)
            return
        except OSError:
            pass
    raise exc


def _make_writable(path: Path) -> None:
    try:
        os.chmod(path, stat.S_IWRITE)
    except OSError:
        pass
    parent = path.parent
    try:
        os.chmod(parent, stat.S_IWRITE)
    except OSError:
        pass
