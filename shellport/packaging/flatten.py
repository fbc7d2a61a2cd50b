"""
Surface Flattener - surface 展平

将一个 surface 及其嵌套元素、常驻/绑定动画递归解析为按绘制顺序排列的图层列表。
导入 (convert) 与换装重合成 (recompose) 共用同一实现，区别只在于激活的 bind 集合。

绘制顺序::

    1. 隐式底图 surfaceN.png / surface0N.png
    2. element 列表（数字文件名递归为对应 surface）
    3. 动画（按 ID 升序）的第 0 帧
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from shellport.legacy.model import (
    Animation,
    CompositeMethod,
    FlattenedLayer,
    IntervalClass,
    SurfaceGraph,
    as_surface_id,
)

# 递归深度上限，防止自引用 / 循环引用
MAX_DEPTH = 10


def implicit_base_names(surface_id: int) -> List[str]:
    """File names a shell may use for a surface's base image instead of an element."""
    if surface_id < 0:
        return []
    names = [f"surface{surface_id}.png"]
    if surface_id < 10:
        names.append(f"surface0{surface_id}.png")
    return names


@dataclass(frozen=True)
class CollectedAnimation:
    """动画及其所属 surface"""
    animation_id: int
    animation: Animation
    owner_id: int


class SurfaceFlattener:
    """
    展平器（每次运行构造一次的短生命周期对象）

    Args:
        graph: 解析后的 surface 图
        base_dir: shell 目录，图片路径相对于此
        active_binds: 当前启用的 bind group ID
        max_depth: 递归上限
        exists: 文件存在性检查（测试可替换）
    """

    def __init__(
        self,
        graph: SurfaceGraph,
        base_dir: Path,
        active_binds: Iterable[int] = (),
        max_depth: int = MAX_DEPTH,
        exists: Optional[Callable[[Path], bool]] = None,
    ):
        self.graph = graph
        self.base_dir = Path(base_dir)
        self.active_binds: FrozenSet[int] = frozenset(active_binds)
        self.max_depth = max_depth
        self._exists = exists or (lambda p: p.is_file())

    # ------------------------------------------------------------------
    # 判定
    # ------------------------------------------------------------------

    def find_implicit_base(self, surface_id: int) -> Optional[str]:
        for name in implicit_base_names(surface_id):
            if self._exists(self.base_dir / name):
                return name
        return None

    def is_rendered(self, animation_id: int, animation: Animation) -> bool:
        """Whether an animation's first frame belongs in a static render."""
        kind = animation.kind
        if kind & IntervalClass.ALWAYS:
            return True
        if kind & IntervalClass.BIND:
            return animation_id in self.active_binds
        return bool(kind & IntervalClass.AMBIENT)

    def is_followed(self, animation_id: int, animation: Animation) -> bool:
        """Whether the animation collector walks into an animation's first frame."""
        kind = animation.kind
        if kind & IntervalClass.ALWAYS:
            return True
        return bool(kind & IntervalClass.BIND) and animation_id in self.active_binds

    # ------------------------------------------------------------------
    # 展平
    # ------------------------------------------------------------------

    def flatten(
        self,
        surface_id: int,
        offset_x: int = 0,
        offset_y: int = 0,
        depth: int = 0,
        exclude_animation_id: Optional[int] = None,
        overrides: Optional[Mapping[int, int]] = None,
    ) -> List[FlattenedLayer]:
        if depth > self.max_depth:
            return []

        overrides = overrides or {}
        effective_id = overrides.get(surface_id, surface_id)
        layers: List[FlattenedLayer] = []

        implicit = self.find_implicit_base(effective_id)
        if implicit:
            layers.append(FlattenedLayer(implicit, CompositeMethod.BASE, offset_x, offset_y))

        surface = self.graph.get(effective_id)
        if surface is None:
            return layers

        for element in surface.elements:
            target = as_surface_id(element.file)
            if target is not None and target in self.graph:
                layers.extend(self.flatten(
                    target,
                    offset_x + element.x,
                    offset_y + element.y,
                    depth + 1,
                    exclude_animation_id,
                    overrides,
                ))
            else:
                layers.append(FlattenedLayer(
                    element.file,
                    element.method,
                    offset_x + element.x,
                    offset_y + element.y,
                ))

        for anim_id in sorted(surface.animations):
            if exclude_animation_id is not None and anim_id == exclude_animation_id:
                continue
            anim = surface.animations[anim_id]
            if not self.is_rendered(anim_id, anim) or not anim.patterns:
                continue
            pattern = anim.patterns[0]
            target = pattern.surface_id
            if target is None:
                continue
            layers.extend(self.flatten(
                target,
                offset_x + pattern.x,
                offset_y + pattern.y,
                depth + 1,
                exclude_animation_id,
                overrides,
            ))

        return layers

    # ------------------------------------------------------------------
    # 动画收集
    # ------------------------------------------------------------------

    def collect_animations(self, surface_id: int) -> Dict[int, CollectedAnimation]:
        """
        Collect every animation reachable from a surface, keyed by animation ID.

        Walks element references and the first frame of always/active-bind
        animations, then tops up with bind animations owned by active bind
        surfaces the walk never reached.
        """
        collected: Dict[int, CollectedAnimation] = {}
        self._collect(surface_id, collected, 0)

        for bind_id in sorted(self.active_binds):
            if bind_id in collected:
                continue
            owner = self.graph.get(bind_id)
            if owner is None:
                continue
            for anim_id, anim in owner.animations.items():
                if anim.kind & IntervalClass.BIND:
                    collected[anim_id] = CollectedAnimation(anim_id, anim, bind_id)
        return collected

    def _collect(self, surface_id: int, collected: Dict[int, CollectedAnimation], depth: int) -> None:
        if depth > self.max_depth:
            return
        surface = self.graph.get(surface_id)
        if surface is None:
            return

        for anim_id, anim in surface.animations.items():
            collected[anim_id] = CollectedAnimation(anim_id, anim, surface_id)

        for element in surface.elements:
            target = as_surface_id(element.file)
            if target is not None:
                self._collect(target, collected, depth + 1)

        for anim_id, anim in surface.animations.items():
            if not self.is_followed(anim_id, anim) or not anim.patterns:
                continue
            target = anim.patterns[0].surface_id
            if target is not None:
                self._collect(target, collected, depth + 1)


def flatten_surface(
    graph: SurfaceGraph,
    surface_id: int,
    base_dir: Path,
    active_binds: Iterable[int] = (),
    offset_x: int = 0,
    offset_y: int = 0,
    depth: int = 0,
    exclude_animation_id: Optional[int] = None,
    overrides: Optional[Mapping[int, int]] = None,
) -> List[FlattenedLayer]:
    """Functional shorthand for ``SurfaceFlattener(...).flatten(...)``."""
    flattener = SurfaceFlattener(graph, base_dir, active_binds)
    return flattener.flatten(surface_id, offset_x, offset_y, depth, exclude_animation_id, overrides)
