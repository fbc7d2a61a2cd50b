from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from .encoding import LEGACY_ENCODING, decode_legacy
from .model import Costume, Descriptor

logger = logging.getLogger(__name__)

BIND_NAME_RE = re.compile(r"^sakura\.bindgroup(\d+)\.name$", re.IGNORECASE)
BIND_DEFAULT_RE = re.compile(r"^sakura\.bindgroup(\d+)\.default$", re.IGNORECASE)


def parse_descript_text(content: str) -> Descriptor:
    data: Dict[str, str] = {}
    defaults: List[int] = []
    names: Dict[int, str] = {}
    default_flags: Dict[int, bool] = {}

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith('//'):
            continue
        key, sep, val = line.partition(',')
        if not sep:
            continue
        key = key.strip()
        val = val.strip()
        if not key or not val:
            continue
        data[key.lower()] = val

        m = BIND_DEFAULT_RE.match(key)
        if m:
            bind_id = int(m.group(1))
            default_flags[bind_id] = val == '1'
            if val == '1':
                defaults.append(bind_id)
            continue
        m = BIND_NAME_RE.match(key)
        if m:
            names[int(m.group(1))] = val

    costumes = [
        Costume(
            id=bind_id,
            name=names.get(bind_id) or f"Costume {bind_id}",
            is_default=default_flags.get(bind_id, False),
        )
        for bind_id in sorted(set(names) | set(default_flags))
    ]
    return Descriptor(data=data, default_bind_ids=defaults, costumes=costumes)


def parse_descript(data: bytes, encoding: str = LEGACY_ENCODING) -> Descriptor:
    """Parse raw descript.txt bytes (legacy codepage)."""
    return parse_descript_text(decode_legacy(data, encoding))


def find_descript(directory: Union[str, Path]) -> Optional[Path]:
    """descript.txt lookup, tolerant of the upper-case names some archivers produce."""
    directory = Path(directory)
    candidate = directory / 'descript.txt'
    if candidate.is_file():
        return candidate
    try:
        for child in directory.iterdir():
            if child.is_file() and child.name.lower() == 'descript.txt':
                return child
    except OSError:
        return None
    return None


def load_descript(directory: Union[str, Path], encoding: str = LEGACY_ENCODING) -> Descriptor:
    """Read ``<directory>/descript.txt``; unreadable or missing gives an empty Descriptor."""
    path = find_descript(directory)
    if path is None:
        logger.warning("descript.txt not found in %s", directory)
        return Descriptor()
    try:
        return parse_descript(path.read_bytes(), encoding)
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
        return Descriptor()
