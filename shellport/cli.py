from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .config_io import load_config
from .legacy.descript import load_descript
from .legacy.errors import ShellImportError
from .legacy.surfaces import load_surfaces_dir
from .packaging.adapter import UkagakaAvatarAdapter

logger = logging.getLogger("shellport")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="shellport", description="Import legacy mascot shells as avatar bundles")
    parser.add_argument("--cache", type=str, default=None, help="Avatar install directory (overrides config)")
    parser.add_argument("--config", type=str, default=None, help="Path to shellport.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd")

    p_import = sub.add_parser("import", help="Extract a .nar/.zip package and convert its shell")
    p_import.add_argument("archive", type=str, help="Path to the package archive")
    p_import.add_argument("--work-dir", type=str, default=None, help="Extraction directory")

    p_conv = sub.add_parser("convert", help="Convert an already extracted shell directory")
    p_conv.add_argument("shell", type=str, help="Shell directory (descript.txt + surfaces.txt)")
    p_conv.add_argument("--ghost", type=str, default=None, help="Ghost (definition) directory")

    p_rec = sub.add_parser("recompose", help="Re-render an installed avatar with another costume set")
    p_rec.add_argument("bundle", type=str, help="Installed avatar directory")
    p_rec.add_argument("--bind", type=int, action="append", default=[], help="Active bind group ID (repeatable)")

    p_cos = sub.add_parser("costumes", help="List costumes of an installed avatar")
    p_cos.add_argument("bundle", type=str, help="Installed avatar directory")

    p_ins = sub.add_parser("inspect", help="Print a summary of a shell's definitions")
    p_ins.add_argument("shell", type=str, help="Shell directory")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not args.cmd:
        parser.print_help()
        return 2

    cfg = load_config(Path(args.config) if args.config else None)
    adapter = UkagakaAvatarAdapter(args.cache, cfg)

    try:
        if args.cmd == "import":
            archive = Path(args.archive)
            if not archive.exists():
                print(f"Archive not found: {archive}")
                return 2
            avatar_id = adapter.install_archive(archive, args.work_dir)
            _print_report(adapter)
            print(avatar_id)
            return 0

        if args.cmd == "convert":
            shell = Path(args.shell)
            if not shell.is_dir():
                print(f"Shell dir not found: {shell}")
                return 2
            avatar_id = adapter.convert_and_install(args.ghost, shell)
            _print_report(adapter)
            print(avatar_id)
            return 0

        if args.cmd == "recompose":
            adapter.recompose(Path(args.bundle), args.bind)
            _print_report(adapter)
            return 0

        if args.cmd == "costumes":
            costumes = adapter.list_costumes(args.bundle)
            print(json.dumps([c.to_dict() for c in costumes], ensure_ascii=False, indent=2))
            return 0

        if args.cmd == "inspect":
            return _cmd_inspect(Path(args.shell), cfg["import"]["legacy_encoding"])
    except ShellImportError as e:
        # 对用户只报告导入失败，细节留在日志里
        logger.debug("Import failed", exc_info=True)
        print(f"Import failed: {e.message}")
        return 1

    return 0


def _print_report(adapter: UkagakaAvatarAdapter) -> None:
    report = adapter.last_report
    if report is None or report.ok:
        return
    print(f"Completed with {report.summary()}", file=sys.stderr)
    for name in report.missing_images:
        print(f"  missing: {name}", file=sys.stderr)


def _cmd_inspect(shell: Path, encoding: str) -> int:
    if not shell.is_dir():
        print(f"Shell dir not found: {shell}")
        return 2
    descript = load_descript(shell, encoding)
    graph = load_surfaces_dir(shell, encoding)
    summary = {
        "name": descript.get("name"),
        "type": descript.get("type"),
        "craftman": descript.get("craftman"),
        "defaults": descript.default_bind_ids,
        "costumes": [c.to_dict() for c in descript.costumes],
        "settings": graph.settings,
        "surfaces": len(graph.surfaces),
        "collisions": sum(len(s.collisions) for s in graph.surfaces.values()),
        "animations": sum(len(s.animations) for s in graph.surfaces.values()),
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0
