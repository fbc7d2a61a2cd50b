"""
测试 shell 转换、帧合成与换装重合成
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pygame
import pytest

from shellport.legacy.errors import CacheMissingError, CompositionError, NeutralSurfaceMissingError
from shellport.legacy.model import Costume
from shellport.legacy.surfaces import parse_surfaces
from shellport.packaging.adapter import (
    FrameKind,
    UkagakaAvatarAdapter,
    build_emotion_mapping,
    classify_animation,
    frame_file_name,
    resolve_active_binds,
    select_pattern,
)
from shellport.packaging.avatar_bundle import CACHE_FILE, MODEL_FILE, AvatarBundle
from shellport.packaging.flatten import SurfaceFlattener


WHITE = (255, 255, 255, 255)
BLUE = (0, 0, 255, 255)
GREEN = (0, 255, 0, 255)
RED = (255, 0, 0, 255)
BLACK = (0, 0, 0, 255)
YELLOW = (255, 255, 0, 255)
MAGENTA = (255, 0, 255, 255)

EYES = (5, 5)
MOUTH = (8, 14)
HAT = (0, 0)

SURFACES = """
surface0
{
element0,base,body.png,0,0
element1,overlay,11000,0,0
element2,overlay,11100,0,0
collision0,2,2,10,10,Head
animation20.interval,bind
animation20.pattern0,overlay,3000,0,0,0
}

surface11000
{
element0,overlay,eyes_open.png,5,5
animation11000.interval,sometimes
animation11000.pattern0,overlay,11001,50,0,0
animation11000.pattern1,overlay,11002,50,0,0
animation11000.pattern2,overlay,11001,50,0,0
}
surface11001
{
element0,overlay,eyes_half.png,5,5
}
surface11002
{
element0,overlay,eyes_closed.png,5,5
}

surface11100
{
element0,overlay,mouth_closed.png,8,14
animation11100.interval,talk
animation11100.pattern0,overlay,11100,0,0,0
animation11100.pattern1,overlay,11101,80,0,0
}
surface11101
{
element0,overlay,mouth_open.png,8,14
}

surface3000
{
element0,overlay,hat.png,0,0
}
"""

DESCRIPT = (
    "charset,Shift_JIS\n"
    "type,shell\n"
    "name,TestShell\n"
    "craftman,Someone\n"
    "sakura.bindgroup20.name,Hat\n"
    "sakura.bindgroup20.default,1\n"
    "sakura.bindgroup21.name,Scarf\n"
)


def _png(path: Path, size, color) -> None:
    surf = pygame.Surface(size, pygame.SRCALPHA, 32)
    surf.fill(color)
    pygame.image.save(surf, str(path))


def _make_shell(root: Path) -> Path:
    shell = root / "shell" / "master"
    shell.mkdir(parents=True)
    (shell / "descript.txt").write_bytes(DESCRIPT.encode("cp932"))
    (shell / "surfaces.txt").write_bytes(SURFACES.encode("cp932"))
    _png(shell / "body.png", (20, 20), WHITE)
    _png(shell / "eyes_open.png", (4, 2), BLUE)
    _png(shell / "eyes_half.png", (4, 2), GREEN)
    _png(shell / "eyes_closed.png", (4, 2), RED)
    _png(shell / "mouth_closed.png", (4, 2), BLACK)
    _png(shell / "mouth_open.png", (4, 2), YELLOW)
    _png(shell / "hat.png", (20, 3), MAGENTA)
    return shell


def _pixel(path: Path, xy):
    return tuple(pygame.image.load(str(path)).get_at(xy))


@pytest.fixture
def installed(tmp_path: Path):
    shell = _make_shell(tmp_path / "src")
    adapter = UkagakaAvatarAdapter(tmp_path / "cache")
    avatar_id = adapter.convert_and_install(None, shell)
    return adapter, adapter.bundle_dir(avatar_id)


class TestConvert:
    """测试导入转换"""

    def test_bundle_files(self, installed):
        """测试包目录文件与 model.json 元数据"""
        adapter, bundle_dir = installed
        assert bundle_dir.name.startswith("ukagaka-TestShell-")
        assert (bundle_dir / MODEL_FILE).is_file()
        assert (bundle_dir / CACHE_FILE).is_file()

        bundle = AvatarBundle.load(bundle_dir)
        assert bundle.version == "1.0"
        assert (bundle.width, bundle.height) == (20, 20)
        assert bundle.meta.name == "TestShell"
        assert bundle.meta.author == "Someone"
        assert bundle.meta.type == "ukagaka"
        assert [c.id for c in bundle.meta.costumes] == [20, 21]

    def test_emotion_mapping(self, installed):
        """surface 2 不存在时 happy 退回 surface 0；angry / sad 不出现"""
        _, bundle_dir = installed
        bundle = AvatarBundle.load(bundle_dir)
        assert set(bundle.mapping) == {"idle.neutral", "idle.happy"}
        neutral = bundle.mapping["idle.neutral"]
        assert neutral.base == "surface0.png"
        assert neutral.eyes_closed == "surface0_blink_11000_v1.png"
        assert neutral.mouth_open == "surface0_talk_11100_v1.png"
        assert neutral.mouth_open_eyes_closed == "surface0_talkblink_11100_11000_v1.png"
        assert bundle.mapping["idle.happy"] == neutral

    def test_base_image(self, installed):
        """测试底图像素"""
        _, bundle_dir = installed
        base = bundle_dir / "surface0.png"
        # 默认服装 (bind 20) 的帽子；环境动画第 0 帧画在睁眼之上
        assert _pixel(base, HAT) == MAGENTA
        assert _pixel(base, EYES) == GREEN
        assert _pixel(base, MOUTH) == BLACK
        assert _pixel(base, (19, 19)) == WHITE

    def test_blink_frame(self, installed):
        """测试闭眼帧"""
        _, bundle_dir = installed
        frame = bundle_dir / "surface0_blink_11000_v1.png"
        assert _pixel(frame, EYES) == RED
        assert _pixel(frame, MOUTH) == BLACK
        assert _pixel(frame, HAT) == MAGENTA

    def test_talk_frame(self, installed):
        """测试张嘴帧"""
        _, bundle_dir = installed
        frame = bundle_dir / "surface0_talk_11100_v1.png"
        assert _pixel(frame, MOUTH) == YELLOW
        assert _pixel(frame, EYES) == GREEN

    def test_combined_frame(self, installed):
        """测试张嘴闭眼组合帧"""
        _, bundle_dir = installed
        frame = bundle_dir / "surface0_talkblink_11100_11000_v1.png"
        assert _pixel(frame, MOUTH) == YELLOW
        assert _pixel(frame, EYES) == RED

    def test_collisions_and_cache(self, installed):
        """测试碰撞区域输出与 surfaces.json 缓存"""
        _, bundle_dir = installed
        model = json.loads((bundle_dir / MODEL_FILE).read_text(encoding="utf-8"))
        assert model["collisions"]["idle.neutral"] == [
            {"id": 0, "type": "rect", "rect": [2, 2, 8, 8], "name": "Head"}
        ]
        assert model["meta"]["descript"]["_defaults"] == [20]
        assert model["meta"]["originalName"] == "TestShell"

        cache = json.loads((bundle_dir / CACHE_FILE).read_text(encoding="utf-8"))
        assert "11000" in cache["surfaces"]
        assert Path(cache["shellDir"]).is_dir()
        assert cache["costumes"][0] == {"id": 20, "name": "Hat", "category": "Costume", "default": True}

    def test_list_costumes(self, installed):
        """测试按目录或 ID 读取服装列表"""
        adapter, bundle_dir = installed
        by_dir = adapter.list_costumes(bundle_dir)
        by_id = adapter.list_costumes(bundle_dir.name)
        assert by_dir == by_id
        assert by_dir == [Costume(20, "Hat", True), Costume(21, "Scarf", False)]
        assert adapter.list_costumes("no-such-avatar") == []


class TestConvertEdgeCases:
    """测试边界情况"""

    def test_implicit_surface0_only(self, tmp_path: Path):
        """只有 surface0.png 隐式底图也能转换"""
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "descript.txt").write_text("name,Plain\n", encoding="ascii")
        (shell / "surfaces.txt").write_text("surface0\n{\n}\n", encoding="ascii")
        _png(shell / "surface0.png", (6, 4), WHITE)

        adapter = UkagakaAvatarAdapter(tmp_path / "cache")
        bundle_dir = adapter.bundle_dir(adapter.convert_and_install(None, shell))
        bundle = AvatarBundle.load(bundle_dir)
        assert bundle.mapping["idle.neutral"].base == "surface0.png"
        assert bundle.mapping["idle.neutral"].eyes_closed is None
        assert (bundle.width, bundle.height) == (6, 4)
        assert bundle.meta.author == "Unknown"

    def test_missing_surface0(self, tmp_path: Path):
        """缺少 surface 0 时转换失败"""
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "surfaces.txt").write_text("surface1\n{\nelement0,base,a.png,0,0\n}\n", encoding="ascii")
        with pytest.raises(NeutralSurfaceMissingError):
            UkagakaAvatarAdapter(tmp_path / "cache").convert_and_install(None, shell)

    def test_neutral_with_nothing_to_composite(self, tmp_path: Path):
        """普通情绪没有可合成图片时转换失败"""
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "surfaces.txt").write_text("surface0\n{\nelement0,base,gone.png,0,0\n}\n", encoding="ascii")
        with pytest.raises(CompositionError):
            UkagakaAvatarAdapter(tmp_path / "cache").convert_and_install(None, shell)

    def test_name_from_ghost(self, tmp_path: Path):
        """shell 没有名称时使用 ghost 的名称与作者"""
        ghost = tmp_path / "ghost"
        ghost.mkdir()
        (ghost / "descript.txt").write_text("type,ghost\nname,Sakura\ncraftman,Maker\n", encoding="ascii")
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "surfaces.txt").write_text("surface0\n{\n}\n", encoding="ascii")
        _png(shell / "surface0.png", (2, 2), WHITE)

        adapter = UkagakaAvatarAdapter(tmp_path / "cache")
        bundle = AvatarBundle.load(adapter.bundle_dir(adapter.convert_and_install(ghost, shell)))
        assert bundle.meta.name == "Sakura"
        assert bundle.meta.author == "Maker"

    def test_optional_emotion_skipped(self, tmp_path: Path, caplog):
        """可选情绪的图片全部缺失时跳过该情绪，只记录一条告警"""
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "surfaces.txt").write_text(
            "surface0\n{\n}\nsurface4\n{\nelement0,base,gone.png,0,0\n}\n", encoding="ascii"
        )
        _png(shell / "surface0.png", (2, 2), WHITE)

        adapter = UkagakaAvatarAdapter(tmp_path / "cache")
        with caplog.at_level(logging.WARNING):
            bundle_dir = adapter.bundle_dir(adapter.convert_and_install(None, shell))

        assert set(AvatarBundle.load(bundle_dir).mapping) == {"idle.neutral", "idle.happy"}
        assert "Surface 4 for idle.angry could not be composited" in caplog.text
        assert "has no layers" not in caplog.text

        report = adapter.last_report
        assert len(report.warnings) == 1
        assert report.missing_images == ["gone.png"]
        assert not report.ok

    def test_optional_emotion_without_layers(self, tmp_path: Path, caplog):
        """可选情绪展平为空时记录 no layers 告警"""
        shell = tmp_path / "shell"
        shell.mkdir()
        (shell / "surfaces.txt").write_text("surface0\n{\n}\nsurface6\n{\n}\n", encoding="ascii")
        _png(shell / "surface0.png", (2, 2), WHITE)

        adapter = UkagakaAvatarAdapter(tmp_path / "cache")
        with caplog.at_level(logging.WARNING):
            adapter.convert_and_install(None, shell)

        assert "Mapped surface 6 for idle.sad has no layers" in caplog.text
        assert "could not be composited" not in caplog.text
        assert adapter.last_report.missing_images == []

    def test_emotion_surfaces(self):
        """标准 surface 编号映射到情绪键"""
        g = parse_surfaces("surface0\n{\n}\nsurface2\n{\n}\nsurface6\n{\n}\n")
        assert build_emotion_mapping(g) == {"idle.neutral": 0, "idle.happy": 2, "idle.sad": 6}


class TestRecompose:
    """测试换装重合成"""

    def test_remove_hat(self, installed):
        """测试取消帽子后重合成"""
        adapter, bundle_dir = installed
        adapter.recompose(bundle_dir, [21])
        assert _pixel(bundle_dir / "surface0.png", HAT) == WHITE
        assert _pixel(bundle_dir / "surface0_blink_11000_v1.png", HAT) == WHITE
        assert AvatarBundle.load(bundle_dir).mapping["idle.neutral"].base == "surface0.png"

    def test_empty_selection_uses_defaults(self, installed):
        """空选择回退到默认服装"""
        adapter, bundle_dir = installed
        adapter.recompose(bundle_dir, [20])
        explicit = (bundle_dir / "surface0.png").read_bytes()

        adapter.recompose(bundle_dir, [21])
        adapter.recompose(bundle_dir, [])
        assert (bundle_dir / "surface0.png").read_bytes() == explicit
        assert _pixel(bundle_dir / "surface0.png", HAT) == MAGENTA

    def test_missing_cache(self, installed):
        """缺少 surfaces.json 时重合成失败"""
        adapter, bundle_dir = installed
        (bundle_dir / CACHE_FILE).unlink()
        with pytest.raises(CacheMissingError):
            adapter.recompose(bundle_dir, [20])


class TestClassification:
    """测试动画分类与帧选择"""

    TEXT = (
        "surface0\n{\nelement0,overlay,11050,0,0\nelement1,overlay,500,0,0\n}\n"
        "surface11050\n{\nanimation7.interval,bind\n"
        "animation7.pattern0,overlay,1,0,0,0\nanimation7.pattern1,overlay,2,0,0,0\n}\n"
        "surface500\n{\nanimation11150.interval,bind\nanimation11150.pattern0,overlay,500,0,0,0\n"
        "animation11150.pattern1,overlay,501,0,0,0\n}\n"
    )

    def _collected(self, binds):
        flattener = SurfaceFlattener(parse_surfaces(self.TEXT), Path("."), binds, exists=lambda p: False)
        return flattener.collect_animations(0)

    def test_bind_ranges(self):
        """测试 bind 动画按编号范围分类"""
        collected = self._collected([7, 11150])
        # 所属 surface 落在 110xx -> 眨眼；否则看动画 ID 111xx -> 说话
        assert classify_animation(collected[7], [7, 11150]) is FrameKind.BLINK
        assert classify_animation(collected[11150], [7, 11150]) is FrameKind.TALK

    def test_inactive_bind_not_classified(self):
        """未激活的 bind 动画不参与帧合成"""
        collected = self._collected([])
        assert classify_animation(collected[7], []) is None

    def test_select_pattern(self):
        """测试眨眼 / 说话帧选择"""
        collected = self._collected([7, 11150])
        assert select_pattern(FrameKind.BLINK, collected[7]).surface_ref == "2"
        assert select_pattern(FrameKind.TALK, collected[11150]).surface_ref == "501"

    def test_frame_file_name(self):
        """测试帧文件命名"""
        assert frame_file_name(4, FrameKind.TALK, 11101) == "surface4_talk_11101_v1.png"


class TestResolveActiveBinds:
    """测试空选择的默认服装回退"""

    COSTUMES = [Costume(1, "A", True), Costume(2, "B", False), Costume(3, "C", True)]

    def test_empty_selection_uses_defaults(self):
        """空选择回退到默认服装"""
        assert resolve_active_binds(self.COSTUMES, []) == [1, 3]
        assert resolve_active_binds(self.COSTUMES, None) == [1, 3]

    def test_explicit_selection_kept(self):
        """显式选择保持不变"""
        assert resolve_active_binds(self.COSTUMES, [2]) == [2]

    def test_no_costumes(self):
        """没有服装时空选择仍为空"""
        assert resolve_active_binds([], []) == []
