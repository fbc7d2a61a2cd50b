"""
Shell data model - 伺か shell 数据结构

descript.txt / surfaces.txt 解析结果的结构化表示：
- Descriptor: 键值描述文件 + 派生的服装 (bind group) 信息
- SurfaceGraph: surface 编号 -> 元素 / 碰撞区域 / 动画
- FlattenedLayer: 展平后可直接绘制的图层
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any, Dict, List, Optional


# ============================================================================
# 枚举
# ============================================================================

class CompositeMethod(Enum):
    """Element / layer drawing method."""
    BASE = "base"
    OVERLAY = "overlay"
    REPLACE = "replace"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> 'CompositeMethod':
        key = (name or "").strip().lower()
        if key == "overlayfast":
            return cls.OVERLAY
        for member in cls:
            if member.value == key:
                return member
        return cls.UNKNOWN


class IntervalClass(Flag):
    """
    动画 interval 分类

    interval 是自由格式字符串（如 "bind+sometimes"），解析时一次性归类。
    使用 Flag 是因为同一个字符串可能同时包含多个分类关键字。
    """
    NEVER = 0
    ALWAYS = auto()
    BIND = auto()
    AMBIENT = auto()     # periodic / blink / random / sometimes
    TALK = auto()


AMBIENT_KEYWORDS = ("periodic", "blink", "random", "sometimes")


def classify_interval(raw: str) -> IntervalClass:
    text = (raw or "").lower()
    kind = IntervalClass.NEVER
    if "always" in text:
        kind |= IntervalClass.ALWAYS
    if "bind" in text:
        kind |= IntervalClass.BIND
    if any(word in text for word in AMBIENT_KEYWORDS):
        kind |= IntervalClass.AMBIENT
    if "talk" in text:
        kind |= IntervalClass.TALK
    return kind


_INT_RE = re.compile(r"^\s*-?\d+\s*$")


def parse_int(text: Any, default: int = 0) -> int:
    """Lenient integer parsing; anything unparsable becomes ``default``."""
    try:
        return int(str(text).strip())
    except (TypeError, ValueError):
        return default


def as_surface_id(text: Any) -> Optional[int]:
    """Return the integer a field spells out exactly, or None for file names."""
    if isinstance(text, int):
        return text
    if text is None or not _INT_RE.match(str(text)):
        return None
    return int(str(text).strip())


# ============================================================================
# 描述文件
# ============================================================================

@dataclass(frozen=True)
class Costume:
    """服装 / bind group"""
    id: int
    name: str
    is_default: bool = False
    category: str = "Costume"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'default': self.is_default,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Costume':
        return cls(
            id=parse_int(d.get('id')),
            name=d.get('name') or f"Costume {d.get('id')}",
            is_default=bool(d.get('default', False)),
            category=d.get('category', 'Costume'),
        )


@dataclass
class Descriptor:
    """
    descript.txt 内容

    data 保存小写键 -> 原值；default_bind_ids / costumes 为解析时派生的只读信息。
    为了兼容旧的 JSON 结构，``descriptor["_defaults"]`` 与 ``descriptor["_costumes"]``
    也可以直接取值。
    """
    data: Dict[str, str] = field(default_factory=dict)
    default_bind_ids: List[int] = field(default_factory=list)
    costumes: List[Costume] = field(default_factory=list)

    def __getitem__(self, key: str) -> Any:
        if key == '_defaults':
            return list(self.default_bind_ids)
        if key == '_costumes':
            return [c.to_dict() for c in self.costumes]
        return self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in ('_defaults', '_costumes') or key in self.data

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.data)
        out['_defaults'] = list(self.default_bind_ids)
        out['_costumes'] = [c.to_dict() for c in self.costumes]
        return out

    @property
    def is_empty(self) -> bool:
        return not self.data


# ============================================================================
# Surface 图
# ============================================================================

@dataclass
class Element:
    """elementN,method,file,x,y"""
    id: int
    method: CompositeMethod
    file: str
    x: int = 0
    y: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'method': self.method.value,
            'file': self.file,
            'x': self.x,
            'y': self.y,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Element':
        return cls(
            id=parse_int(d.get('id')),
            method=CompositeMethod.from_name(d.get('method', '')),
            file=str(d.get('file', '')),
            x=parse_int(d.get('x')),
            y=parse_int(d.get('y')),
        )


@dataclass
class Collision:
    """collisionN,left,top,right,bottom,name"""
    id: int
    x: int
    y: int
    x2: int
    y2: int
    name: str = ""

    def to_rect(self) -> List[int]:
        """[x, y, width, height]"""
        return [self.x, self.y, self.x2 - self.x, self.y2 - self.y]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'x': self.x,
            'y': self.y,
            'x2': self.x2,
            'y2': self.y2,
            'name': self.name,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Collision':
        return cls(
            id=parse_int(d.get('id')),
            x=parse_int(d.get('x')),
            y=parse_int(d.get('y')),
            x2=parse_int(d.get('x2')),
            y2=parse_int(d.get('y2')),
            name=d.get('name', ''),
        )


@dataclass
class Pattern:
    """animationN.patternM,method,surface,wait,x,y"""
    method: str
    surface_ref: str
    wait: str = "0"
    x: int = 0
    y: int = 0
    id: int = 0

    @property
    def surface_id(self) -> Optional[int]:
        return as_surface_id(self.surface_ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'method': self.method,
            'surface': self.surface_ref,
            'wait': self.wait,
            'x': self.x,
            'y': self.y,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Pattern':
        return cls(
            method=d.get('method', ''),
            surface_ref=str(d.get('surface', '')),
            wait=str(d.get('wait', '0')),
            x=parse_int(d.get('x')),
            y=parse_int(d.get('y')),
            id=parse_int(d.get('id')),
        )


@dataclass
class Animation:
    """
    动画定义

    patterns 按出现顺序保存（不按 patternM 编号排序），index 0 是默认帧。
    """
    interval: str = "never"
    patterns: List[Pattern] = field(default_factory=list)
    kind: IntervalClass = IntervalClass.NEVER

    def set_interval(self, raw: str) -> None:
        self.interval = raw
        self.kind = classify_interval(raw)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'interval': self.interval,
            'patterns': [p.to_dict() for p in self.patterns],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Animation':
        anim = cls(patterns=[Pattern.from_dict(p) for p in d.get('patterns', [])])
        anim.set_interval(d.get('interval', 'never'))
        return anim


@dataclass
class Surface:
    elements: List[Element] = field(default_factory=list)
    collisions: List[Collision] = field(default_factory=list)
    animations: Dict[int, Animation] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'elements': [e.to_dict() for e in self.elements],
            'collisions': [c.to_dict() for c in self.collisions],
            'animations': {str(k): v.to_dict() for k, v in self.animations.items()},
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Surface':
        return cls(
            elements=[Element.from_dict(e) for e in d.get('elements', [])],
            collisions=[Collision.from_dict(c) for c in d.get('collisions', [])],
            animations={
                int(k): Animation.from_dict(v)
                for k, v in d.get('animations', {}).items()
            },
        )


DEFAULT_SETTINGS = {
    'version': '1',
    'collision-sort': 'ascend',
    'animation-sort': 'ascend',
}


@dataclass
class SurfaceGraph:
    """surfaces*.txt 的完整解析结果"""
    surfaces: Dict[int, Surface] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))

    def get(self, surface_id: int) -> Optional[Surface]:
        return self.surfaces.get(surface_id)

    def __contains__(self, surface_id: object) -> bool:
        return surface_id in self.surfaces

    def to_dict(self) -> Dict[str, Any]:
        return {
            'surfaces': {str(k): v.to_dict() for k, v in self.surfaces.items()},
            'aliases': dict(self.aliases),
            'settings': dict(self.settings),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SurfaceGraph':
        settings = dict(DEFAULT_SETTINGS)
        settings.update(d.get('settings', {}))
        return cls(
            surfaces={int(k): Surface.from_dict(v) for k, v in d.get('surfaces', {}).items()},
            aliases=dict(d.get('aliases', {})),
            settings=settings,
        )


# ============================================================================
# 展平结果
# ============================================================================

@dataclass(frozen=True)
class FlattenedLayer:
    """Drawable layer; offsets are absolute from the flattening root."""
    file: str
    method: CompositeMethod
    x: int
    y: int
