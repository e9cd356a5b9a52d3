"""Secure loading of control-plane credentials from dotenv files.

Only ``RESTOREPROOF_`` keys are exported; anything else in the file is
ignored so that a shared dotenv cannot change unrelated process settings.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

ENV_PREFIX = "RESTOREPROOF_"
ENV_FILE_VARIABLE = "RESTOREPROOF_ENV_FILE"


def _candidates(env_file: str | Path | None, start_dir: Path) -> tuple[list[Path], bool]:
    """Paths to try in order, and whether the first one was asked for explicitly."""
    explicit = env_file or os.environ.get(ENV_FILE_VARIABLE)
    if explicit:
        path = Path(explicit).expanduser()
        # Absolute but not resolved: a symlink must stay visible to the checks.
        return [Path(os.path.abspath(start_dir / path))], True
    project_root = Path(__file__).resolve().parents[2]
    return [start_dir / ".env", project_root / ".env"], False


def _check_file(path: Path) -> None:
    """Reject anything but a regular file private to the current user."""
    info = path.lstat()
    if stat.S_ISLNK(info.st_mode):
        raise PermissionError(f"Refusing to load dotenv symlink: {path}. Use a real file with chmod 600.")
    if not stat.S_ISREG(info.st_mode):
        raise ValueError(f"Dotenv path is not a regular file: {path}")
    if os.name == "nt":
        return
    if hasattr(os, "getuid") and info.st_uid != os.getuid():
        raise PermissionError(f"Refusing to load dotenv owned by another user: {path}")
    if info.st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise PermissionError(
            f"Insecure dotenv permissions for {path}. "
            "Backup and vCenter credentials must not be group/world readable (chmod 600)."
        )


def load_environment_secrets(
    env_file: str | Path | None = None,
    *,
    override: bool = False,
    strict: bool = True,
    start_dir: Path | None = None,
) -> Path | None:
    """Export control-plane credentials from a dotenv file.

    Values reach ``load_config`` through its environment overrides, e.g.
    ``RESTOREPROOF_BACKUP__PASSWORD``.

    Args:
        env_file: Dotenv path. If omitted, ``RESTOREPROOF_ENV_FILE`` is used,
            then ``.env`` in ``start_dir``, then ``.env`` at the project root.
        override: Whether dotenv values replace variables already set.
        strict: Whether a missing explicit path raises.
        start_dir: Base for relative paths (default: working directory).

    Returns:
        The loaded path, or None when no dotenv file was found.
    """
    base_dir = start_dir or Path.cwd()
    candidates, explicit = _candidates(env_file, base_dir)

    path = next((p for p in candidates if os.path.lexists(p)), None)
    if path is None:
        if explicit and strict:
            raise FileNotFoundError(f"Dotenv file not found: {candidates[0]}")
        return None

    _check_file(path)

    exported = ignored = 0
    for key, value in dotenv_values(path).items():
        if value is None or not key.startswith(ENV_PREFIX):
            ignored += 1
            continue
        if override or key not in os.environ:
            os.environ[key] = value
            exported += 1
    if ignored:
        logger.warning("[BOOT] Ignored %s dotenv entries without the %s prefix", ignored, ENV_PREFIX)
    logger.debug("[BOOT] Exported %s credential variable(s) from %s", exported, path)
    return path
