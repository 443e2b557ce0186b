import csv
import logging
import os
import threading
from typing import Iterable, List, Optional

from .errors import Conflict, EmptyPoolError, InvalidInput
from .random_source import secure_random_index

logger = logging.getLogger(__name__)


def _normalize(word: str) -> str:
    return word.strip().rstrip(',').strip()


class CsvWordStore:
    """Headerless CSV word list: the first column of each row is a word."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[str]:
        # Missing or unreadable files raise OSError; callers treat that as fatal.
        words: List[str] = []
        with open(self.path, newline='', encoding='utf-8') as fh:
            for row in csv.reader(fh):
                if not row:
                    continue
                word = _normalize(row[0])
                if word:
                    words.append(word)
        logger.info(f"[words-load] path={self.path} rows={len(words)}")
        return words

    def _ends_with_newline(self) -> bool:
        with open(self.path, 'rb') as fh:
            fh.seek(0, os.SEEK_END)
            if fh.tell() == 0:
                return True
            fh.seek(-1, os.SEEK_END)
            return fh.read(1) in (b'\n', b'\r')

    def append(self, word: str) -> None:
        # Rows keep the `word,` shape; the writer quotes commas and quotes
        fresh_line = self._ends_with_newline()
        with open(self.path, 'a', newline='', encoding='utf-8') as fh:
            if not fresh_line:
                fh.write('\n')
            csv.writer(fh, lineterminator='\n').writerow([word, ''])


class WordSupplier:
    """Deduplicated pool of candidate secret words.

    The pool is shared by every session. Picks work on a snapshot so an add
    running on another thread never disturbs an in-flight pick.
    """

    def __init__(self, words: Iterable[str] = (), store: Optional[CsvWordStore] = None):
        self._store = store
        self._lock = threading.Lock()
        self._words: List[str] = []
        self._seen = set()
        for word in words:
            self._insert(word)

    @classmethod
    def from_store(cls, store: CsvWordStore) -> 'WordSupplier':
        supplier = cls(store.load(), store=store)
        logger.info(f"[words-ready] count={len(supplier)}")
        return supplier

    def __len__(self) -> int:
        return len(self._words)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._words)

    def _insert(self, word: str) -> bool:
        word = _normalize(word)
        key = word.lower()
        if not word or key in self._seen:
            return False
        self._seen.add(key)
        self._words.append(word)
        return True

    def has_duplicate(self, candidate: str) -> bool:
        return _normalize(candidate or '').lower() in self._seen

    def pick_next(self, excluding: Optional[str] = None) -> str:
        pool = self.snapshot()
        if not pool:
            raise EmptyPoolError()
        # A single-word pool cannot honour the exclusion
        if len(pool) > 1 and excluding is not None:
            pool = [w for w in pool if w != excluding] or pool
        return pool[secure_random_index(len(pool))]

    def add(self, word: str) -> str:
        word = _normalize(word or '')
        if not word:
            raise InvalidInput('Word is required')
        with self._lock:
            if self.has_duplicate(word):
                raise Conflict('Word already in list')
            if self._store is not None:
                self._store.append(word)
            self._insert(word)
        logger.info(f"[words-add] count={len(self._words)}")
        return word
