"""Document store used by the pool.

Documents are plain JSON-able dicts addressed by slash-separated paths such as
``rosters/<uid>/weeks/2``. A collection is every document exactly one segment
below a path.
"""
import copy
import json
import logging
import os
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import StoreError

log = logging.getLogger(__name__)

Listener = Callable[[str, Optional[Dict[str, Any]]], None]


def doc_path(*parts: Any) -> str:
    return '/'.join(str(p).strip('/') for p in parts)


class DocumentStore:
    """Interface for a key/document store with last-write-wins semantics."""

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, path: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError

    def scan(self, collection: str) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def children(self, collection: str) -> List[str]:
        """Ids one segment below ``collection`` that have any document beneath them."""
        raise NotImplementedError

    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        raise NotImplementedError


class MemoryStore(DocumentStore):
    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._listeners: List[Tuple[str, Listener]] = []
        self._lock = threading.RLock()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            if merge and path in self._docs:
                doc = dict(self._docs[path])
                doc.update(copy.deepcopy(data))
            else:
                doc = copy.deepcopy(data)
            self._docs[path] = doc
            self._written()
        self._notify(path, doc)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        with self._lock:
            if path not in self._docs:
                raise StoreError(f'No document at {path}')
            doc = dict(self._docs[path])
            doc.update(copy.deepcopy(data))
            self._docs[path] = doc
            self._written()
        self._notify(path, doc)

    def delete(self, path: str) -> None:
        with self._lock:
            existed = self._docs.pop(path, None) is not None
            if existed:
                self._written()
        if existed:
            self._notify(path, None)

    def scan(self, collection: str) -> Dict[str, Dict[str, Any]]:
        prefix = collection.rstrip('/') + '/'
        with self._lock:
            out = {}
            for path, doc in self._docs.items():
                if path.startswith(prefix) and '/' not in path[len(prefix):]:
                    out[path[len(prefix):]] = copy.deepcopy(doc)
            return out

    def children(self, collection: str) -> List[str]:
        prefix = collection.rstrip('/') + '/'
        with self._lock:
            ids = {path[len(prefix):].split('/', 1)[0] for path in self._docs if path.startswith(prefix)}
        return sorted(ids)

    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        """Call ``callback(path, doc)`` when ``path`` or anything under it changes."""
        entry = (path.rstrip('/'), callback)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)
        return unsubscribe

    def _written(self) -> None:
        pass

    def _notify(self, path: str, doc: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            listeners = [cb for p, cb in self._listeners if path == p or path.startswith(p + '/')]
        for cb in listeners:
            try:
                cb(path, copy.deepcopy(doc) if doc is not None else None)
            except Exception:
                log.exception('Store listener failed for %s', path)


class JsonFileStore(MemoryStore):
    """MemoryStore persisted to a single JSON file after every write."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        if os.path.exists(path):
            try:
                with open(path, 'r', encoding='utf-8') as fh:
                    self._docs = json.load(fh)
            except (OSError, ValueError) as e:
                raise StoreError(f'Could not read store file {path}: {e}')

    def _written(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                json.dump(self._docs, fh, indent=1, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f'Could not write store file {self.path}: {e}')
