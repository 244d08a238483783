# -*- coding: utf-8 -*-
"""
===================================
进程内缓存服务
===================================

职责：
1. 提供带 TTL 的读穿透缓存（get_or_fetch）
2. 过期条目与不存在等价，调用方永远看不到过期数据
3. 获取失败不写入缓存，下一次调用会重新请求

不做同一 key 并发未命中的去重：并发未命中会各自请求上游。
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """缓存条目：now - stored_at <= ttl 时有效"""
    value: V
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl


class CacheBackend(ABC, Generic[K, V]):
    """缓存能力接口，便于替换为分布式缓存"""

    @abstractmethod
    def get(self, key: K) -> Optional[V]:
        """命中返回值，未命中或已过期返回 None"""

    @abstractmethod
    def set(self, key: K, value: V, ttl: float) -> None:
        """写入条目"""

    @abstractmethod
    def invalidate(self, key: K) -> bool:
        """删除条目，返回是否存在"""

    def get_or_fetch(self, key: K, fetcher: Callable[[], V], ttl: float) -> V:
        """
        读穿透：命中直接返回（不调用 fetcher）；
        未命中则同步调用 fetcher，成功后写入缓存，异常原样抛出且不缓存
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = fetcher()
        self.set(key, value, ttl)
        return value


class MemoryCache(CacheBackend[K, V]):
    """内存缓存（互斥锁保护）"""

    def __init__(self, clock: Optional[Callable[[], float]] = None, name: str = "memory"):
        self._entries: Dict[K, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.monotonic
        self._name = name
        self._hits = 0
        self._misses = 0

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"[Cache:{self._name}] {key} 已过期")
                return None
            self._hits += 1
            return entry.value

    def set(self, key: K, value: V, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

    def invalidate(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[K], bool]) -> int:
        """按条件批量删除，返回删除数量"""
        with self._lock:
            keys = [key for key in self._entries if predicate(key)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def purge_expired(self) -> int:
        """清理所有过期条目，返回清理数量"""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"[Cache:{self._name}] 清理过期条目 {len(expired)} 个")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            active = sum(1 for entry in self._entries.values() if entry.is_valid(now))
            return {
                'name': self._name,
                'total_entries': len(self._entries),
                'active_entries': active,
                'hits': self._hits,
                'misses': self._misses,
            }
