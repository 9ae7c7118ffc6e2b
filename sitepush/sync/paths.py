"""Path helpers shared by local and remote sides of a push.

Remote roots may use either ``/`` or ``\\`` separators independently of the
local platform, so these helpers work on plain strings rather than
``pathlib`` objects.
"""

import os
import re
import sys
from datetime import datetime

_STARTS_WITH_SLASH = re.compile(r"^/")
_STARTS_WITH_DRIVE = re.compile(r"^[a-z]:", re.IGNORECASE)

_CASE_INSENSITIVE = sys.platform.startswith("win")

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def append_separator_if_needed(path: str) -> str:
    """Ensure a directory path ends with its own separator.

    Raises:
        ValueError: If the path is empty or has no separator at all.
    """
    if not path:
        raise ValueError("Path can not be empty")

    if "/" in path:
        return path if path.endswith("/") else f"{path}/"

    if "\\" in path or _STARTS_WITH_DRIVE.match(path):
        return path if path.endswith("\\") else f"{path}\\"

    raise ValueError(f"Path {path} seems to be a filename")


def append_local_separator_if_needed(path: str) -> str:
    if not path:
        raise ValueError("Path can not be empty")
    return path if path.endswith(os.sep) else f"{path}{os.sep}"


def is_full_path(path: str) -> bool:
    if not path:
        return False
    return bool(_STARTS_WITH_SLASH.match(path) or _STARTS_WITH_DRIVE.match(path))


def _fold(value: str, local: bool) -> str:
    return value.casefold() if local and _CASE_INSENSITIVE else value


def same_directory(d1: str, d2: str, local: bool = True) -> bool:
    """Compare two directory paths, ignoring a trailing separator."""
    if not d1 or not d2:
        return False
    return _fold(append_separator_if_needed(d1), local) == _fold(
        append_separator_if_needed(d2), local
    )


def same_filename(f1: str, f2: str, local: bool = True) -> bool:
    if not f1 or not f2:
        return False
    return _fold(f1, local) == _fold(f2, local)


def _separator_of(path: str) -> str:
    if "/" in path:
        return "/"
    if "\\" in path:
        return "\\"
    raise ValueError(f"{path} does not contain directory separator")


def generate_remote_path(local_path: str, local_root: str, remote_root: str) -> str:
    """Map a file under ``local_root`` to the same relative spot under ``remote_root``.

    Both roots are expected to end with a separator. When the roots use
    different separators, the relative part is translated to the remote one.

    Example::

        generate_remote_path("/home/user/site/css/a.css", "/home/user/site/", "/var/www/")
        # -> "/var/www/css/a.css"
    """
    if not local_path:
        raise ValueError("Path can not be empty")

    ls = _separator_of(local_root)
    rs = _separator_of(remote_root)

    if not _fold(local_path, True).startswith(_fold(local_root, True)):
        raise ValueError(f"{local_path} is not under {local_root}")

    relative = local_path[len(local_root):]
    if ls != rs:
        relative = relative.replace(ls, rs)
    return f"{remote_root}{relative}"


def timestamped(path: str, now: datetime) -> str:
    """Append the ``_YYYYMMDDHHMMSS`` copy suffix to a path."""
    return f"{path}_{now.strftime(TIMESTAMP_FORMAT)}"
