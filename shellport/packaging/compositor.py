"""
Surface Compositor - 图层合成

画布尺寸取第一张成功加载的图层；之后按列表顺序逐层 alpha 混合（source-over），
后面的图层覆盖前面的图层。base / overlay / replace 目前都按 alpha 混合处理。
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

import pygame
from pygame import Surface

from shellport.legacy.errors import CompositionError
from shellport.legacy.model import FlattenedLayer

logger = logging.getLogger(__name__)


class LayerCompositor:
    """
    单次运行内的合成器

    同一 shell 目录下的图层图像只加载一次（一次导入会反复合成同一批零件）。
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self._layer_cache: Dict[str, Optional[Surface]] = {}
        self.missing: set = set()

    def _load_layer_image(self, file: str) -> Optional[Surface]:
        if file in self._layer_cache:
            return self._layer_cache[file]

        path = self.base_dir / file.replace('\\', '/')
        surface: Optional[Surface] = None
        if path.is_file():
            try:
                surface = pygame.image.load(str(path))
            except pygame.error as e:
                logger.warning("Failed to load image %s: %s", path, e)
        else:
            logger.warning("Image not found: %s", file)
            self.missing.add(file)
        self._layer_cache[file] = surface
        return surface

    def compose(self, layers: Iterable[FlattenedLayer]) -> Surface:
        canvas: Optional[Surface] = None
        for layer in layers:
            image = self._load_layer_image(layer.file)
            if image is None:
                continue
            if canvas is None:
                w, h = image.get_size()
                logger.debug("Creating base canvas: %dx%d", w, h)
                canvas = pygame.Surface((w, h), pygame.SRCALPHA, 32)
            # base / overlay / replace 一律 source-over
            canvas.blit(image, (layer.x, layer.y))

        if canvas is None:
            raise CompositionError("No valid images found to composite", path=str(self.base_dir))
        return canvas


def compose_layers(layers: Iterable[FlattenedLayer], base_dir: Path) -> Surface:
    return LayerCompositor(base_dir).compose(layers)


def save_png(surface: Surface, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pygame.image.save(surface, str(path))
