"""
Avatar Bundle - 输出包格式

包目录结构::

    <cache_dir>/<avatar_id>/
    ├── model.json                       # mapping + meta，渲染器读取
    ├── surfaces.json                    # surface 图缓存，仅 recompose 使用
    ├── surface0.png                     # 各情绪底图
    ├── surface0_blink_11001_v1.png      # 闭眼帧
    └── surface0_talk_11101_v1.png       # 张嘴帧
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from shellport.legacy.model import Collision, Costume, SurfaceGraph

MODEL_FILE = "model.json"
CACHE_FILE = "surfaces.json"
BUNDLE_VERSION = "1.0"


@dataclass
class StyleFrames:
    """单个情绪的帧文件名（均相对于包目录）"""
    base: str
    mouth_open: Optional[str] = None
    eyes_closed: Optional[str] = None
    mouth_open_eyes_closed: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {'base': self.base}
        if self.mouth_open:
            d['mouthOpen'] = self.mouth_open
        if self.eyes_closed:
            d['eyesClosed'] = self.eyes_closed
        if self.mouth_open_eyes_closed:
            d['mouthOpenEyesClosed'] = self.mouth_open_eyes_closed
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'StyleFrames':
        return cls(
            base=d['base'],
            mouth_open=d.get('mouthOpen'),
            eyes_closed=d.get('eyesClosed'),
            mouth_open_eyes_closed=d.get('mouthOpenEyesClosed'),
        )


@dataclass
class AvatarMeta:
    name: str
    author: str = "Unknown"
    costumes: List[Costume] = field(default_factory=list)
    type: str = "ukagaka"
    original_name: Optional[str] = None
    descript: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'author': self.author,
            'type': self.type,
            'originalName': self.original_name or self.name,
            'descript': self.descript,
            'costumes': [c.to_dict() for c in self.costumes],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'AvatarMeta':
        return cls(
            name=d.get('name', ''),
            author=d.get('author', 'Unknown'),
            costumes=[Costume.from_dict(c) for c in d.get('costumes', [])],
            type=d.get('type', 'ukagaka'),
            original_name=d.get('originalName'),
            descript=dict(d.get('descript', {})),
        )


def collision_to_dict(collision: Collision) -> Dict[str, Any]:
    return {
        'id': collision.id,
        'type': 'rect',
        'rect': collision.to_rect(),
        'name': collision.name,
    }


@dataclass
class AvatarBundle:
    """model.json"""
    mapping: Dict[str, StyleFrames]
    meta: AvatarMeta
    collisions: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    width: int = 0
    height: int = 0
    version: str = BUNDLE_VERSION

    def to_json(self) -> str:
        data = {
            'version': self.version,
            'mapping': {k: v.to_dict() for k, v in self.mapping.items()},
            'collisions': self.collisions,
            'width': self.width,
            'height': self.height,
            'meta': self.meta.to_dict(),
        }
        return json.dumps(data, ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> 'AvatarBundle':
        data = json.loads(json_str)
        return cls(
            mapping={k: StyleFrames.from_dict(v) for k, v in data.get('mapping', {}).items()},
            meta=AvatarMeta.from_dict(data.get('meta', {})),
            collisions=dict(data.get('collisions', {})),
            width=data.get('width', 0),
            height=data.get('height', 0),
            version=data.get('version', BUNDLE_VERSION),
        )

    @classmethod
    def load(cls, bundle_dir: Path) -> 'AvatarBundle':
        with open(Path(bundle_dir) / MODEL_FILE, 'r', encoding='utf-8') as f:
            return cls.from_json(f.read())

    def save(self, bundle_dir: Path) -> None:
        bundle_dir = Path(bundle_dir)
        bundle_dir.mkdir(parents=True, exist_ok=True)
        with open(bundle_dir / MODEL_FILE, 'w', encoding='utf-8') as f:
            f.write(self.to_json())


@dataclass
class SurfaceCache:
    """
    surfaces.json

    保存完整 surface 图、服装列表以及原 shell 目录（图片查找都相对于它），
    换装时无需重新解压和解析。
    """
    graph: SurfaceGraph
    costumes: List[Costume]
    shell_dir: str

    def to_json(self) -> str:
        graph = self.graph.to_dict()
        data = {
            'surfaces': graph['surfaces'],
            'aliases': graph['aliases'],
            'settings': graph['settings'],
            'costumes': [c.to_dict() for c in self.costumes],
            'shellDir': self.shell_dir,
        }
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> 'SurfaceCache':
        data = json.loads(json_str)
        return cls(
            graph=SurfaceGraph.from_dict(data),
            costumes=[Costume.from_dict(c) for c in data.get('costumes', [])],
            shell_dir=data.get('shellDir', ''),
        )

    @classmethod
    def load(cls, bundle_dir: Path) -> 'SurfaceCache':
        with open(Path(bundle_dir) / CACHE_FILE, 'r', encoding='utf-8') as f:
            return cls.from_json(f.read())

    def save(self, bundle_dir: Path) -> None:
        bundle_dir = Path(bundle_dir)
        bundle_dir.mkdir(parents=True, exist_ok=True)
        with open(bundle_dir / CACHE_FILE, 'w', encoding='utf-8') as f:
            f.write(self.to_json())
