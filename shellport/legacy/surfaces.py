"""
Surface definition parser - surfaces.txt 解析器

语法概要::

    descript
    {
    version,1
    }

    surface0,surface10-15,!12
    {
    element0,overlay,body.png,0,0
    collision0,56,45,98,89,Head
    animation1.interval,sometimes
    animation1.pattern0,overlay,100,5,0,0
    }

    surface.alias
    {
    smile,[2]
    }

同一头部选中的多个 surface 共享块内的每一行定义。
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

from .encoding import LEGACY_ENCODING, decode_legacy
from .model import (
    Animation,
    Collision,
    CompositeMethod,
    Element,
    Pattern,
    Surface,
    SurfaceGraph,
    parse_int,
)

logger = logging.getLogger(__name__)

SURFACE_HEADER_RE = re.compile(r"^surface(\.append)?.*\d", re.IGNORECASE)
SURFACE_PREFIX_RE = re.compile(r"^surface(\.append)?", re.IGNORECASE)
ALIAS_HEADER_RE = re.compile(r"^(sakura\.|kero\.|char\d+\.)?surface\.alias$", re.IGNORECASE)
ELEMENT_RE = re.compile(r"^element(\d+)$", re.IGNORECASE)
COLLISION_RE = re.compile(r"^collision(\d+)$", re.IGNORECASE)
ANIMATION_RE = re.compile(r"^animation(\d+)\.(.+)$", re.IGNORECASE)
PATTERN_RE = re.compile(r"^pattern(\d+)$", re.IGNORECASE)

SURFACE_FILE_RE = re.compile(r"^surfaces.*\.txt$", re.IGNORECASE)
CANONICAL_FILE = "surfaces.txt"


def parse_id_expression(expr: str) -> List[int]:
    """
    Evaluate a header payload such as ``"0,10-15,!12"``.

    Positive entries are unioned, ``!`` entries are subtracted afterwards, so
    ``"1,2,!1"`` and ``"!1,1,2"`` both give ``[2]``.
    """
    included: Set[int] = set()
    excluded: Set[int] = set()
    for part in expr.split(','):
        part = part.strip()
        negate = part.startswith('!')
        if negate:
            part = part[1:].strip()
        part = SURFACE_PREFIX_RE.sub('', part).strip()
        if not part:
            continue

        ids: Iterable[int]
        if '-' in part:
            start_s, _, end_s = part.partition('-')
            try:
                ids = range(int(start_s), int(end_s) + 1)
            except ValueError:
                continue
        else:
            try:
                ids = [int(part)]
            except ValueError:
                continue

        target = excluded if negate else included
        target.update(i for i in ids if i >= 0)
    return sorted(included - excluded)


def _parse_element(parts: List[str]) -> Optional[Element]:
    if len(parts) < 3:
        return None
    m = ELEMENT_RE.match(parts[0].strip())
    if not m:
        return None
    return Element(
        id=int(m.group(1)),
        method=CompositeMethod.from_name(parts[1]),
        file=parts[2].strip(),
        x=parse_int(parts[3]) if len(parts) > 3 else 0,
        y=parse_int(parts[4]) if len(parts) > 4 else 0,
    )


def _parse_collision(parts: List[str]) -> Optional[Collision]:
    if len(parts) < 6:
        return None
    m = COLLISION_RE.match(parts[0].strip())
    if not m:
        return None
    return Collision(
        id=int(m.group(1)),
        x=parse_int(parts[1]),
        y=parse_int(parts[2]),
        x2=parse_int(parts[3]),
        y2=parse_int(parts[4]),
        name=parts[5].strip(),
    )


class _ParseState:
    def __init__(self) -> None:
        self.graph = SurfaceGraph()
        self.current_ids: Optional[List[int]] = None
        self.depth = 0
        self.in_descript = False
        self.in_alias = False
        self.pending_alias = False
        self.skipped = 0


def parse_surfaces(content: str) -> SurfaceGraph:
    st = _ParseState()

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith('//'):
            continue

        # descript 块
        if st.depth == 0 and line.lower() == 'descript':
            st.in_descript = True
            continue
        if st.in_descript:
            if line.startswith('{'):
                continue
            if line.startswith('}'):
                st.in_descript = False
                continue
            key, sep, val = line.partition(',')
            key, val = key.strip().lower(), val.strip().lower()
            if sep and key and val:
                st.graph.settings[key] = val
            continue

        # alias 块
        if st.depth == 0 and ALIAS_HEADER_RE.match(line):
            st.pending_alias = True
            st.current_ids = None
            continue
        if st.pending_alias and line.startswith('{'):
            st.pending_alias = False
            st.in_alias = True
            continue
        if st.in_alias:
            if line.startswith('}'):
                st.in_alias = False
                continue
            key, sep, val = line.partition(',')
            if sep and key.strip():
                st.graph.aliases[key.strip()] = val.strip()
            continue

        # surface 头部
        if st.depth == 0 and not line.startswith(('{', '}')):
            if SURFACE_HEADER_RE.match(line):
                st.current_ids = parse_id_expression(SURFACE_PREFIX_RE.sub('', line))
            continue

        if line.startswith('{'):
            st.depth += 1
            for sid in st.current_ids or ():
                st.graph.surfaces.setdefault(sid, Surface())
            continue

        if line.startswith('}'):
            st.depth = max(0, st.depth - 1)
            if st.depth == 0:
                st.current_ids = None
            continue

        if st.depth > 0 and st.current_ids:
            _parse_body_line(st, line)

    if st.skipped:
        logger.debug("Skipped %d malformed surface definition lines", st.skipped)
    return st.graph


def _parse_body_line(st: _ParseState, line: str) -> None:
    parts = line.split(',')
    head = parts[0].strip().lower()
    surfaces = [st.graph.surfaces[sid] for sid in st.current_ids or ()]

    if head.startswith('element'):
        element = _parse_element(parts)
        if element is None:
            st.skipped += 1
            return
        for s in surfaces:
            s.elements.append(element)
    elif head.startswith('collision'):
        collision = _parse_collision(parts)
        if collision is None:
            st.skipped += 1
            return
        for s in surfaces:
            s.collisions.append(collision)
    elif head.startswith('animation'):
        m = ANIMATION_RE.match(parts[0].strip())
        if not m:
            st.skipped += 1
            return
        anim_id = int(m.group(1))
        sub = m.group(2).strip().lower()
        if sub == 'interval':
            if len(parts) < 2:
                st.skipped += 1
                return
            interval = parts[1].strip()
            for s in surfaces:
                s.animations.setdefault(anim_id, Animation()).set_interval(interval)
            return
        pm = PATTERN_RE.match(sub)
        if not pm:
            return
        if len(parts) < 3:
            st.skipped += 1
            return
        pattern = Pattern(
            id=int(pm.group(1)),
            method=parts[1].strip(),
            surface_ref=parts[2].strip(),
            wait=parts[3].strip() if len(parts) > 3 else '0',
            x=parse_int(parts[4]) if len(parts) > 4 else 0,
            y=parse_int(parts[5]) if len(parts) > 5 else 0,
        )
        for s in surfaces:
            s.animations.setdefault(anim_id, Animation()).patterns.append(pattern)


def list_surface_files(directory: Union[str, Path]) -> List[Path]:
    """surfaces*.txt, with surfaces.txt first and the rest alphabetical."""
    directory = Path(directory)
    files = [p for p in directory.iterdir() if p.is_file() and SURFACE_FILE_RE.match(p.name)]
    return sorted(files, key=lambda p: (p.name.lower() != CANONICAL_FILE, p.name.lower()))


def load_surfaces_dir(directory: Union[str, Path], encoding: str = LEGACY_ENCODING) -> SurfaceGraph:
    files = list_surface_files(directory)
    logger.info("Loading %d surface definition files from %s", len(files), directory)
    chunks = [decode_legacy(p.read_bytes(), encoding) for p in files]
    return parse_surfaces('\n'.join(chunks) + '\n')
