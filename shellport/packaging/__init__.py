"""
shellport Packaging Module
伺か shell 导入与头像包生成

包含:
- archive: .nar/.zip 解包与目录分类
- flatten: surface 展平与动画收集
- compositor: 图层合成
- avatar_bundle: model.json / surfaces.json 格式
- adapter: 导入 / 换装重合成入口
- jobs: 换装重合成队列
"""

from .archive import (
    PackageRole,
    PackageLayout,
    extract_archive,
    analyze_directory,
    extract_package,
)

from .flatten import (
    MAX_DEPTH,
    CollectedAnimation,
    SurfaceFlattener,
    flatten_surface,
)

from .compositor import (
    LayerCompositor,
    compose_layers,
    save_png,
)

from .avatar_bundle import (
    StyleFrames,
    AvatarMeta,
    AvatarBundle,
    SurfaceCache,
)

from .adapter import (
    EMOTION_SURFACES,
    FrameKind,
    UkagakaAvatarAdapter,
    resolve_active_binds,
)

from .jobs import RecomposeQueue

__all__ = [
    # Archive
    'PackageRole',
    'PackageLayout',
    'extract_archive',
    'analyze_directory',
    'extract_package',
    # Flatten
    'MAX_DEPTH',
    'CollectedAnimation',
    'SurfaceFlattener',
    'flatten_surface',
    # Compositor
    'LayerCompositor',
    'compose_layers',
    'save_png',
    # Bundle
    'StyleFrames',
    'AvatarMeta',
    'AvatarBundle',
    'SurfaceCache',
    # Adapter
    'EMOTION_SURFACES',
    'FrameKind',
    'UkagakaAvatarAdapter',
    'resolve_active_binds',
    # Jobs
    'RecomposeQueue',
]
