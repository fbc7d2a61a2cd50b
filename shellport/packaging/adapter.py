"""
Ukagaka Avatar Adapter - 伺か shell 转换为情绪头像包

流程：
1. 解析 descript.txt 与 surfaces*.txt
2. 标准 surface -> 情绪映射（0 普通 / 2 开心 / 4 生气 / 6 难过）
3. 每个 surface 展平并合成底图
4. 收集可达动画，识别眨眼 / 说话动画并合成闭眼、张嘴帧
5. 写出 model.json 与 surfaces.json（换装重合成用）

换装 (recompose) 只读取 surfaces.json，使用调用方给出的 bind 集合重跑 3-4 步，
按既定文件名覆盖输出。
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from shellport.config_io import load_config
from shellport.legacy.descript import load_descript
from shellport.legacy.errors import (
    CacheMissingError,
    CompositionError,
    NeutralSurfaceMissingError,
    ShellImportError,
)
from shellport.legacy.model import Costume, Descriptor, FlattenedLayer, IntervalClass, Pattern, SurfaceGraph
from shellport.legacy.surfaces import load_surfaces_dir, list_surface_files

from .archive import extract_package
from .avatar_bundle import (
    CACHE_FILE,
    MODEL_FILE,
    AvatarBundle,
    AvatarMeta,
    StyleFrames,
    SurfaceCache,
    collision_to_dict,
)
from .compositor import LayerCompositor, save_png
from .flatten import CollectedAnimation, SurfaceFlattener

logger = logging.getLogger(__name__)


NEUTRAL_KEY = 'idle.neutral'

EMOTION_SURFACES: Dict[str, int] = {
    'idle.neutral': 0,
    'idle.happy': 2,
    'idle.angry': 4,
    'idle.sad': 6,
}

# 最常见制作工具的约定：110xx 眼睛，111xx 嘴
BLINK_RANGE = range(11000, 11100)
TALK_RANGE = range(11100, 11200)

BASE_NAME_RE = re.compile(r"^surface(\d+)\.png$")


class FrameKind(Enum):
    BLINK = "blink"
    TALK = "talk"


@dataclass
class FrameSource:
    """A synthesized frame: owner surface swapped for the pattern's surface."""
    kind: FrameKind
    animation_id: int
    owner_id: int
    pattern: Pattern

    @property
    def target_id(self) -> int:
        return self.pattern.surface_id  # type: ignore[return-value]


@dataclass
class RenderReport:
    """Recoverable issues of one convert / recompose run (logged, never raised)."""
    warnings: List[str] = field(default_factory=list)
    missing_images: List[str] = field(default_factory=list)

    def warn(self, message: str, *args) -> None:
        text = message % args if args else message
        logger.warning(text)
        self.warnings.append(text)

    @property
    def ok(self) -> bool:
        return not self.warnings and not self.missing_images

    def summary(self) -> str:
        return f"{len(self.warnings)} warning(s), {len(self.missing_images)} missing image(s)"


# ============================================================================
# 动画分类
# ============================================================================

def classify_animation(item: CollectedAnimation, active_binds: Iterable[int]) -> Optional[FrameKind]:
    anim = item.animation
    if not anim.patterns:
        return None
    kind = anim.kind
    if kind & IntervalClass.TALK:
        return FrameKind.TALK
    if kind & IntervalClass.AMBIENT:
        return FrameKind.BLINK
    if kind & IntervalClass.BIND and item.animation_id in set(active_binds):
        for number in (item.owner_id, item.animation_id):
            if number in BLINK_RANGE:
                return FrameKind.BLINK
            if number in TALK_RANGE:
                return FrameKind.TALK
    return None


def select_pattern(kind: FrameKind, item: CollectedAnimation) -> Pattern:
    patterns = item.animation.patterns
    if kind is FrameKind.BLINK:
        return patterns[len(patterns) // 2] if len(patterns) > 1 else patterns[0]
    for pattern in patterns:
        sid = pattern.surface_id
        if sid is not None and sid != item.owner_id:
            return pattern
    return patterns[1] if len(patterns) > 1 else patterns[0]


def frame_file_name(surface_id: int, kind: FrameKind, animation_id: int) -> str:
    return f"surface{surface_id}_{kind.value}_{animation_id}_v1.png"


def base_file_name(surface_id: int) -> str:
    return f"surface{surface_id}.png"


# ============================================================================
# 单次渲染
# ============================================================================

class EmotionRenderer:
    """
    一次 convert / recompose 运行的渲染上下文

    graph、shell 目录与激活 bind 集合在构造时固定；不跨运行保存状态。
    """

    def __init__(self, graph: SurfaceGraph, shell_dir: Path, install_dir: Path,
                 active_binds: Iterable[int], report: Optional[RenderReport] = None):
        self.graph = graph
        self.shell_dir = Path(shell_dir)
        self.install_dir = Path(install_dir)
        self.active_binds = list(active_binds)
        self.flattener = SurfaceFlattener(graph, self.shell_dir, self.active_binds)
        self.compositor = LayerCompositor(self.shell_dir)
        self.report = report or RenderReport()
        self.size: Tuple[int, int] = (0, 0)

    def render_base(self, surface_id: int) -> Optional[str]:
        layers = self.flattener.flatten(surface_id)
        if not layers:
            return None
        logger.info("Compositing surface %d (%d layers)", surface_id, len(layers))
        image = self.compositor.compose(layers)
        name = base_file_name(surface_id)
        save_png(image, self.install_dir / name)
        if surface_id == EMOTION_SURFACES[NEUTRAL_KEY]:
            self.size = image.get_size()
        return name

    def find_frame_sources(self, surface_id: int) -> List[FrameSource]:
        collected = self.flattener.collect_animations(surface_id)
        sources: List[FrameSource] = []
        for anim_id in sorted(collected):
            item = collected[anim_id]
            kind = classify_animation(item, self.active_binds)
            if kind is None:
                continue
            pattern = select_pattern(kind, item)
            if pattern.surface_id is None:
                continue
            sources.append(FrameSource(kind, anim_id, item.owner_id, pattern))
        return sources

    def _frame_layers(self, surface_id: int, source: FrameSource) -> List[FlattenedLayer]:
        overrides = {source.owner_id: source.target_id}
        layers = self.flattener.flatten(surface_id, 0, 0, 0, source.animation_id, overrides)
        layers += self.flattener.flatten(source.target_id, source.pattern.x, source.pattern.y, 0)
        return layers

    def _write_frame(self, layers: List[FlattenedLayer], name: str) -> Optional[str]:
        try:
            image = self.compositor.compose(layers)
        except CompositionError as e:
            self.report.warn("Frame %s skipped: %s", name, e.message)
            return None
        save_png(image, self.install_dir / name)
        return name

    def render_frames(self, surface_id: int, style: StyleFrames) -> None:
        blink: Optional[FrameSource] = None
        talk: Optional[FrameSource] = None
        for source in self.find_frame_sources(surface_id):
            name = frame_file_name(surface_id, source.kind, source.animation_id)
            written = self._write_frame(self._frame_layers(surface_id, source), name)
            if written is None:
                continue
            if source.kind is FrameKind.BLINK:
                style.eyes_closed = written
                blink = source
            else:
                style.mouth_open = written
                talk = source

        if blink and talk:
            overrides = {blink.owner_id: blink.target_id, talk.owner_id: talk.target_id}
            layers = self.flattener.flatten(surface_id, 0, 0, 0, talk.animation_id, overrides)
            layers += self.flattener.flatten(blink.target_id, blink.pattern.x, blink.pattern.y, 0)
            layers += self.flattener.flatten(talk.target_id, talk.pattern.x, talk.pattern.y, 0)
            name = f"surface{surface_id}_talkblink_{talk.animation_id}_{blink.animation_id}_v1.png"
            style.mouth_open_eyes_closed = self._write_frame(layers, name)

    def render_surface(self, surface_id: int) -> Optional[StyleFrames]:
        base = self.render_base(surface_id)
        if base is None:
            return None
        style = StyleFrames(base=base)
        self.render_frames(surface_id, style)
        return style

    def render_mapping(self, mapping: Dict[str, int]) -> Dict[str, StyleFrames]:
        """Render each distinct surface once and share the frames between emotion keys."""
        rendered: Dict[int, Optional[StyleFrames]] = {}
        styles: Dict[str, StyleFrames] = {}
        for key, sid in mapping.items():
            if sid not in rendered:
                rendered[sid] = self._render_emotion(key, sid)
            style = rendered[sid]
            if style is not None:
                styles[key] = replace(style)
        return styles

    def _render_emotion(self, key: str, sid: int) -> Optional[StyleFrames]:
        try:
            style = self.render_surface(sid)
        except CompositionError as e:
            if key == NEUTRAL_KEY:
                raise
            self.report.warn("Surface %d for %s could not be composited: %s", sid, key, e.message)
            return None
        if style is None:
            if key == NEUTRAL_KEY:
                raise CompositionError(f"Surface {sid} has nothing to composite", path=str(self.shell_dir))
            self.report.warn("Mapped surface %d for %s has no layers", sid, key)
        return style

    def finish(self) -> RenderReport:
        """把合成器记录的缺失图片并入报告，并输出本次运行的汇总"""
        self.report.missing_images = sorted(self.compositor.missing)
        if self.report.ok:
            logger.info("Render finished without warnings")
        else:
            logger.warning("Render finished with %s", self.report.summary())
        return self.report


# ============================================================================
# 适配器
# ============================================================================

def build_emotion_mapping(graph: SurfaceGraph) -> Dict[str, int]:
    mapping: Dict[str, int] = {}
    for key, sid in EMOTION_SURFACES.items():
        if sid in graph:
            mapping[key] = sid
        elif key == NEUTRAL_KEY:
            raise NeutralSurfaceMissingError("Surface 0 (default) not found in shell.")
    mapping.setdefault('idle.happy', EMOTION_SURFACES[NEUTRAL_KEY])
    return mapping


def make_avatar_id(name: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9\-_]", "", name)
    return f"ukagaka-{safe}-{int(time.time() * 1000)}"


class UkagakaAvatarAdapter:
    """
    shell -> 头像包转换器

    Usage:
        adapter = UkagakaAvatarAdapter(Path("avatar_cache"))
        avatar_id = adapter.convert_and_install(ghost_dir, shell_dir)
        adapter.recompose(adapter.bundle_dir(avatar_id), [20, 31])
    """

    def __init__(self, cache_base: Optional[Union[str, Path]] = None, config: Optional[dict] = None):
        cfg = (config or load_config())["import"]
        self.cache_base = Path(cache_base or cfg["cache_dir"])
        self.encoding: str = cfg["legacy_encoding"]
        self.probe_depth: int = int(cfg["probe_depth"])
        # 最近一次 convert / recompose 的告警汇总
        self.last_report: Optional[RenderReport] = None

    def bundle_dir(self, avatar_id: str) -> Path:
        return self.cache_base / avatar_id

    # ------------------------------------------------------------------
    # 导入
    # ------------------------------------------------------------------

    def convert_and_install(self, definition_dir: Optional[Union[str, Path]],
                            appearance_dir: Union[str, Path]) -> str:
        shell_dir = Path(appearance_dir)
        logger.info("Converting shell %s", shell_dir)

        descript = load_descript(shell_dir, self.encoding)
        ghost = load_descript(definition_dir, self.encoding) if definition_dir else Descriptor()
        name = descript.get('name') or ghost.get('name') or 'unknown_shell'
        logger.info("Default binds: %s", descript.default_bind_ids)

        graph = load_surfaces_dir(shell_dir, self.encoding)
        mapping = build_emotion_mapping(graph)

        avatar_id = make_avatar_id(name)
        install_dir = self.bundle_dir(avatar_id)
        install_dir.mkdir(parents=True, exist_ok=True)

        renderer = EmotionRenderer(graph, shell_dir, install_dir, descript.default_bind_ids)
        styles = renderer.render_mapping(mapping)
        self.last_report = renderer.finish()

        collisions = {}
        for key, sid in mapping.items():
            surface = graph.get(sid)
            if key in styles and surface is not None and surface.collisions:
                collisions[key] = [collision_to_dict(c) for c in surface.collisions]

        logger.info("Found %d costumes", len(descript.costumes))
        SurfaceCache(graph, descript.costumes, str(shell_dir.resolve())).save(install_dir)

        author = (descript.get('author') or descript.get('craftman')
                  or ghost.get('craftman') or 'Unknown')
        bundle = AvatarBundle(
            mapping=styles,
            meta=AvatarMeta(
                name=name,
                author=author,
                costumes=list(descript.costumes),
                original_name=name,
                descript=descript.to_dict(),
            ),
            collisions=collisions,
            width=renderer.size[0],
            height=renderer.size[1],
        )
        bundle.save(install_dir)
        logger.info("Conversion complete. Installed to %s", avatar_id)
        return avatar_id

    def install_archive(self, archive_path: Union[str, Path],
                        work_dir: Optional[Union[str, Path]] = None) -> str:
        """Extract a .nar/.zip and convert its first usable shell."""
        archive_path = Path(archive_path)
        if work_dir is None:
            work_dir = self.cache_base / '_extract' / f"{archive_path.stem}_{int(time.time() * 1000)}"
        layout = extract_package(archive_path, work_dir, self.probe_depth, self.encoding)

        shells = list(layout.appearance_dirs)
        shells += [d for d in layout.definition_dirs if list_surface_files(d)]
        if not shells:
            raise ShellImportError("No shell found in package", path=str(archive_path))
        ghost_dir = layout.definition_dirs[0] if layout.definition_dirs else None
        return self.convert_and_install(ghost_dir, shells[0])

    # ------------------------------------------------------------------
    # 换装
    # ------------------------------------------------------------------

    def recompose(self, bundle_dir: Union[str, Path], active_bind_ids: Optional[Iterable[int]]) -> RenderReport:
        bundle_dir = Path(bundle_dir)
        if not (bundle_dir / CACHE_FILE).is_file():
            raise CacheMissingError("surfaces.json not found. Please re-import the ghost.",
                                    path=str(bundle_dir))
        cache = SurfaceCache.load(bundle_dir)
        binds = resolve_active_binds(cache.costumes, active_bind_ids)
        logger.info("Recomposing %s with binds: %s", bundle_dir, binds)

        bundle = AvatarBundle.load(bundle_dir)
        mapping: Dict[str, int] = {}
        for key, style in bundle.mapping.items():
            m = BASE_NAME_RE.match(style.base)
            if m:
                mapping[key] = int(m.group(1))

        renderer = EmotionRenderer(cache.graph, Path(cache.shell_dir), bundle_dir, binds)
        bundle.mapping.update(renderer.render_mapping(mapping))
        report = renderer.finish()
        self.last_report = report
        if renderer.size != (0, 0):
            bundle.width, bundle.height = renderer.size
        bundle.save(bundle_dir)
        logger.info("Recomposition complete.")
        return report

    def list_costumes(self, avatar: Union[str, Path]) -> List[Costume]:
        """Costumes of an installed avatar, by ID or by bundle directory."""
        bundle_dir = Path(avatar) if Path(avatar).is_dir() else self.bundle_dir(str(avatar))
        if not (bundle_dir / MODEL_FILE).is_file():
            return []
        return AvatarBundle.load(bundle_dir).meta.costumes


def resolve_active_binds(costumes: List[Costume], active_bind_ids: Optional[Iterable[int]]) -> List[int]:
    """
    Empty selection on an avatar that has costumes means "back to the authored
    defaults", not "render with nothing".
    """
    binds = sorted(set(active_bind_ids or ()))
    if costumes and not binds:
        defaults = [c.id for c in costumes if c.is_default]
        if defaults:
            logger.info("Empty costume selection; reverting to defaults %s", defaults)
            return defaults
    return binds
