"""
Package Archive Extractor - .nar / .zip 解包

功能：
- 修复旧编码 (CP932) 的条目文件名
- 防止路径穿越（Zip Slip）
- 扫描解包目录，按 descript.txt 区分 ghost（定义包）与 shell（外观包）

典型结构::

    package.nar
    ├── install.txt
    ├── ghost/master/descript.txt     -> definition
    └── shell/master/descript.txt     -> appearance
        └── surfaces.txt
"""
from __future__ import annotations

import logging
import os
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

from shellport.legacy.descript import find_descript, parse_descript_text
from shellport.legacy.encoding import LEGACY_ENCODING, decode_with_fallback, repair_entry_name
from shellport.legacy.errors import ArchiveError
from shellport.legacy.surfaces import SURFACE_FILE_RE

logger = logging.getLogger(__name__)

DEFAULT_PROBE_DEPTH = 3
BEHAVIOR_SUFFIXES = ('.dic', '.shiori')


class PackageRole(Enum):
    DEFINITION = "ghost"
    APPEARANCE = "shell"
    UNKNOWN = "unknown"


@dataclass
class PackageLayout:
    """解包后的目录分类结果"""
    root: Path
    definition_dirs: List[Path] = field(default_factory=list)
    appearance_dirs: List[Path] = field(default_factory=list)
    has_ghost: bool = False
    has_shell: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.definition_dirs and not self.appearance_dirs

    def to_dict(self) -> dict:
        return {
            'root': str(self.root),
            'definitionDirs': [str(p) for p in self.definition_dirs],
            'appearanceDirs': [str(p) for p in self.appearance_dirs],
            'hasGhost': self.has_ghost,
            'hasShell': self.has_shell,
        }


def safe_entry_path(dest_dir: Path, name: str) -> Optional[Path]:
    """
    Map an archive entry name onto ``dest_dir``.

    Drive letters, absolute prefixes and ``..`` segments are dropped; a name
    that still resolves outside ``dest_dir`` returns None.
    """
    parts = [
        p for p in PurePosixPath(name.replace('\\', '/')).parts
        if p not in ('', '.', '..', '/') and not p.endswith(':')
    ]
    if not parts:
        return None
    dest = Path(dest_dir).resolve()
    target = dest.joinpath(*parts).resolve()
    if os.path.commonpath([str(dest), str(target)]) != str(dest):
        return None
    return target


def extract_archive(archive_path: Union[str, Path], dest_dir: Union[str, Path],
                    encoding: str = LEGACY_ENCODING) -> int:
    """Extract every entry; returns the number of files written."""
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    if not archive_path.is_file():
        raise ArchiveError("File not found", path=str(archive_path))

    dest_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with zipfile.ZipFile(archive_path) as zf:
            infos = zf.infolist()
            logger.info("Found %d entries in %s", len(infos), archive_path.name)
            for info in infos:
                name = repair_entry_name(info, encoding)
                target = safe_entry_path(dest_dir, name)
                if target is None:
                    logger.warning("Skipping unsafe entry name: %r", name)
                    continue
                if info.is_dir() or name.endswith(('/', '\\')):
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src:
                    target.write_bytes(src.read())
                written += 1
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
        raise ArchiveError("Archive unreadable", path=str(archive_path), detail=str(e)) from e

    logger.info("Extraction complete: %d files", written)
    return written


def detect_role(directory: Path, encoding: str = LEGACY_ENCODING) -> PackageRole:
    descript = find_descript(directory)
    if descript is None:
        return PackageRole.UNKNOWN
    try:
        content = decode_with_fallback(descript.read_bytes(), encoding)
    except OSError as e:
        logger.warning("Cannot read %s: %s", descript, e)
        return PackageRole.UNKNOWN

    kind = (parse_descript_text(content).get('type') or '').strip().lower()
    if kind == PackageRole.DEFINITION.value:
        return PackageRole.DEFINITION
    if kind == PackageRole.APPEARANCE.value:
        return PackageRole.APPEARANCE

    files = [p.name for p in directory.iterdir() if p.is_file()]
    if any(SURFACE_FILE_RE.match(f) for f in files):
        return PackageRole.APPEARANCE
    if any(f.lower().endswith(BEHAVIOR_SUFFIXES) for f in files):
        return PackageRole.DEFINITION
    return PackageRole.UNKNOWN


def analyze_directory(root: Union[str, Path], max_depth: int = DEFAULT_PROBE_DEPTH,
                      encoding: str = LEGACY_ENCODING) -> PackageLayout:
    root = Path(root)
    layout = PackageLayout(root=root)

    def visit(current: Path, depth: int) -> None:
        if depth > max_depth:
            return
        for child in sorted(current.iterdir(), key=lambda p: p.name.lower()):
            if not child.is_dir():
                continue
            if find_descript(child) is not None:
                role = detect_role(child, encoding)
                if role is PackageRole.DEFINITION:
                    layout.definition_dirs.append(child)
                elif role is PackageRole.APPEARANCE:
                    layout.appearance_dirs.append(child)
                else:
                    logger.debug("Unclassified descriptor directory: %s", child)
            if child.name.lower() == 'ghost':
                layout.has_ghost = True
            elif child.name.lower() == 'shell':
                layout.has_shell = True
            visit(child, depth + 1)

    visit(root, 0)
    logger.info(
        "Found %d definition and %d appearance directories",
        len(layout.definition_dirs), len(layout.appearance_dirs),
    )
    return layout


def extract_package(archive_path: Union[str, Path], dest_dir: Union[str, Path],
                    probe_depth: int = DEFAULT_PROBE_DEPTH,
                    encoding: str = LEGACY_ENCODING) -> PackageLayout:
    """Extract a package archive and classify its descriptor directories."""
    extract_archive(archive_path, dest_dir, encoding)
    return analyze_directory(dest_dir, probe_depth, encoding)
