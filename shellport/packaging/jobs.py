"""
Recompose Queue - 换装重合成队列

Features:
- 在线程池中执行重合成，不阻塞调用方
- 同一头像同时最多一个运行中的任务
- 运行期间的新请求成为唯一的待执行请求，更新的请求取代尚未开始的旧请求
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from shellport.config_io import load_config

from .adapter import UkagakaAvatarAdapter

logger = logging.getLogger(__name__)


@dataclass
class _Request:
    bind_ids: List[int]
    future: Future = field(default_factory=Future)


@dataclass
class _Slot:
    running: bool = False
    pending: Optional[_Request] = None


class RecomposeQueue:
    """
    按头像目录串行化的重合成调度器。

    Usage:
        queue = RecomposeQueue(adapter, max_workers=2)
        fut = queue.submit(bundle_dir, [20])
        fut.result()   # True 执行完成，False 被更新的请求取代
        queue.shutdown()
    """

    def __init__(self, adapter: UkagakaAvatarAdapter, max_workers: Optional[int] = None):
        if max_workers is None:
            max_workers = int(load_config()["import"]["workers"])
        self._adapter = adapter
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="recompose")
        self._lock = threading.RLock()
        self._slots: Dict[str, _Slot] = {}
        self._shutdown = False

    def submit(self, bundle_dir: Union[str, Path], bind_ids: List[int]) -> Future:
        if self._shutdown:
            raise RuntimeError("RecomposeQueue is shut down")

        key = str(Path(bundle_dir).resolve())
        request = _Request(list(bind_ids))
        with self._lock:
            slot = self._slots.setdefault(key, _Slot())
            if slot.running:
                if slot.pending is not None:
                    logger.debug("Superseding pending recompose for %s", key)
                    try:
                        slot.pending.future.set_result(False)
                    except InvalidStateError:
                        # 调用方已取消
                        logger.debug("Pending recompose for %s was already cancelled", key)
                slot.pending = request
                return request.future
            slot.running = True

        self._executor.submit(self._run, key, request)
        return request.future

    def _run(self, key: str, request: _Request) -> None:
        while request is not None:
            if request.future.set_running_or_notify_cancel():
                try:
                    self._adapter.recompose(Path(key), request.bind_ids)
                except Exception as e:
                    logger.warning("Recompose failed for %s: %s", key, e)
                    request.future.set_exception(e)
                else:
                    request.future.set_result(True)

            with self._lock:
                slot = self._slots[key]
                request = slot.pending
                slot.pending = None
                if request is None:
                    slot.running = False
                    del self._slots[key]

    def is_busy(self, bundle_dir: Union[str, Path]) -> bool:
        with self._lock:
            return str(Path(bundle_dir).resolve()) in self._slots

    def shutdown(self, wait: bool = True) -> None:
        self._shutdown = True
        self._executor.shutdown(wait=wait)
