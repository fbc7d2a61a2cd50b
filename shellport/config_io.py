from __future__ import annotations

from pathlib import Path
from typing import Optional
import json
import os


DEFAULTS = {
    "import": {
        "cache_dir": "avatar_cache",
        "probe_depth": 3,
        "legacy_encoding": "cp932",
        "workers": 2,
    },
}

CONFIG_FILE = "shellport.json"


def _config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env = os.environ.get("SHELLPORT_CONFIG")
    return Path(env) if env else Path(CONFIG_FILE)


def load_config(path: Optional[Path] = None) -> dict:
    p = _config_path(path)
    try:
        if p.exists():
            data = json.loads(p.read_text(encoding="utf-8"))
            # merge defaults (shallow)
            imp = dict(DEFAULTS.get("import", {}))
            imp.update(dict((data.get("import") or {})))
            return {"import": imp}
    except (OSError, ValueError, AttributeError):
        pass
    return {"import": dict(DEFAULTS.get("import", {}))}


def save_config(cfg: dict, path: Optional[Path] = None) -> bool:
    p = _config_path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        # Keep only known keys (avoid bloating)
        imp = dict(DEFAULTS.get("import", {}))
        imp.update({k: v for k, v in (cfg.get("import") or {}).items() if k in imp})
        data = {"import": imp}
        p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return True
    except OSError:
        return False
