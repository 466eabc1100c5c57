from __future__ import annotations
import os
from typing import Optional, Dict, Any

from tilde.tilde_datatypes import TildeError, to_string


def resolve_path(path: str, base_dir: Optional[str]) -> str:
    # Home directory
    if path.startswith("~"):
        return os.path.expanduser(path)
    # Absolute filesystem path
    if os.path.isabs(path):
        return os.path.normpath(path)
    # Empty → source file dir or CWD
    if path == "":
        return base_dir or os.getcwd()
    # Default: relative to source file dir (or CWD)
    base = base_dir or os.getcwd()
    return os.path.normpath(os.path.join(base, path))


def _text_of(content: Any) -> str:
    return content if isinstance(content, str) else to_string(content)


def file_read(path: str, *, base_dir: Optional[str] = None) -> Dict[str, Any]:
    """Reads a UTF-8 file. Failures are reported in the result, never raised."""
    full = resolve_path(path, base_dir)
    try:
        with open(full, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        exists = os.path.exists(full)
        return {
            "content": "",
            "size": 0.0,
            "exists": exists,
            "error": f"Failed to read file: {e.strerror or e}" if exists else "File not found",
        }
    except UnicodeDecodeError as e:
        return {"content": "", "size": 0.0, "exists": True, "error": f"Failed to read file: {e}"}
    return {
        "content": content,
        "size": float(os.path.getsize(full)),
        "exists": True,
        "error": None,
    }


def _write(path: str, content: Any, mode: str, base_dir: Optional[str]) -> Dict[str, Any]:
    full = resolve_path(path, base_dir)
    text = _text_of(content)
    try:
        with open(full, mode, encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        return {
            "success": False,
            "path": path,
            "bytes-written": 0.0,
            "error": f"Failed to write file: {e.strerror or e}",
        }
    return {
        "success": True,
        "path": path,
        "bytes-written": float(len(text.encode("utf-8"))),
        "error": None,
    }


def file_write(path: str, content: Any, *, base_dir: Optional[str] = None) -> Dict[str, Any]:
    return _write(path, content, "w", base_dir)


def file_append(path: str, content: Any, *, base_dir: Optional[str] = None) -> Dict[str, Any]:
    return _write(path, content, "a", base_dir)


def file_exists(path: str, *, base_dir: Optional[str] = None) -> bool:
    return os.path.isfile(resolve_path(path, base_dir))


def dir_exists(path: str, *, base_dir: Optional[str] = None) -> bool:
    return os.path.isdir(resolve_path(path, base_dir))


def file_size(path: str, *, base_dir: Optional[str] = None) -> float:
    full = resolve_path(path, base_dir)
    if not os.path.isfile(full):
        raise TildeError(f"File not found: {path}", code="file-not-found", source=path)
    return float(os.path.getsize(full))


def list_files(path: str = "", *, base_dir: Optional[str] = None) -> list:
    """Sorted names of the entries in a directory."""
    full = resolve_path(path, base_dir)
    if not os.path.isdir(full):
        raise TildeError(f"Directory not found: {path}", code="file-not-found", source=path)
    return sorted(os.listdir(full))
