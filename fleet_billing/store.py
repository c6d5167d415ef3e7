"""
Document store.

Documents are flat dicts of scalars grouped in collections addressed by a
path ("units", "clients/c1/units/u1/payments"). Every write goes through
`store.transaction()`: writes are staged on the transaction and applied
together when the `with` block exits cleanly, or dropped if it raises.
"""

import copy
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import pandas as pd

from .errors import NotFoundError, TransactionError

logger = logging.getLogger(__name__)

Document = Dict[str, object]

# Flat collections
CLIENTS = 'clients'
UNITS = 'units'
PAYMENTS = 'payments'
WORK_ORDERS = 'work_orders'
INSTALLATION_ORDERS = 'installation_orders'
META = 'meta'
NOTIFICATION_LOG = 'notification_log'


def legacy_payments_path(client_id: str, unit_id: str) -> str:
    return f'{CLIENTS}/{client_id}/{UNITS}/{unit_id}/{PAYMENTS}'


def legacy_units_path(client_id: str) -> str:
    return f'{CLIENTS}/{client_id}/{UNITS}'


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def _matches(doc: Document, equals: Dict[str, object]) -> bool:
    return all(doc.get(k) == v for k, v in equals.items())


class Transaction:
    """Staged writes plus reads that see them"""

    def __init__(self, store: 'MemoryStore'):
        self._store = store
        self._writes: Dict[Tuple[str, str], Optional[Document]] = {}   # None marks a delete

    def get(self, path: str, doc_id: str) -> Optional[Document]:
        key = (path, doc_id)
        if key in self._writes:
            staged = self._writes[key]
            return copy.deepcopy(staged) if staged is not None else None
        return self._store.get(path, doc_id)

    def query(self, path: str, **equals) -> List[Tuple[str, Document]]:
        docs = dict(self._store.query(path))
        for (p, doc_id), staged in self._writes.items():
            if p != path:
                continue
            if staged is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = copy.deepcopy(staged)
        return [(i, d) for i, d in docs.items() if _matches(d, equals)]

    def set(self, path: str, doc_id: str, data: Document) -> None:
        self._writes[(path, doc_id)] = dict(data)

    def update(self, path: str, doc_id: str, changes: Document) -> None:
        current = self.get(path, doc_id)
        if current is None:
            raise NotFoundError(f"Document {path}/{doc_id} not found")
        current.update(changes)
        self._writes[(path, doc_id)] = current

    def delete(self, path: str, doc_id: str) -> None:
        self._writes[(path, doc_id)] = None

    @property
    def pending(self) -> int:
        return len(self._writes)


class MemoryStore:
    """In-process store; also the base of the CSV store"""

    def __init__(self, data: Optional[Dict[str, Dict[str, Document]]] = None):
        self._data: Dict[str, Dict[str, Document]] = copy.deepcopy(data) if data else {}
        self._lock = threading.RLock()

    def get(self, path: str, doc_id: str) -> Optional[Document]:
        doc = self._data.get(path, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def query(self, path: str, **equals) -> List[Tuple[str, Document]]:
        return [(doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._data.get(path, {}).items()
                if _matches(doc, equals)]

    def collections(self) -> List[str]:
        return sorted(p for p, docs in self._data.items() if docs)

    def collection_group(self, name: str) -> Iterator[Tuple[str, str, Document]]:
        """Every document in any collection whose last path segment is `name`"""
        for path in self.collections():
            if path.split('/')[-1] != name:
                continue
            for doc_id, doc in list(self._data[path].items()):
                yield path, doc_id, copy.deepcopy(doc)

    @contextmanager
    def locked(self) -> Iterator['MemoryStore']:
        """Hold the store lock across one or more transactions and the reads that check them"""
        with self._lock:
            yield self

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            tx = Transaction(self)
            try:
                yield tx
            except Exception:
                logger.debug(f"Transaction rolled back, {tx.pending} staged write(s) dropped")
                raise
            self._commit(tx._writes)

    def _commit(self, writes: Dict[Tuple[str, str], Optional[Document]]) -> None:
        touched = {path for path, _ in writes}
        snapshot = {path: copy.deepcopy(self._data.get(path, {})) for path in touched}

        for (path, doc_id), doc in writes.items():
            docs = self._data.setdefault(path, {})
            if doc is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = doc

        try:
            self._persist(touched)
        except Exception as e:
            self._data.update(snapshot)
            logger.error(f"Commit failed, restored {len(touched)} collection(s): {e}")
            raise TransactionError(f"Could not save changes: {e}") from e

    def _persist(self, paths) -> None:
        """Hook for stores that write through to disk"""


class CsvStore(MemoryStore):
    """One CSV file per collection inside a directory, written with pandas"""

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._load()

    def _file_for(self, path: str) -> Path:
        return self.directory / (path.replace('/', '__') + '.csv')

    def _load(self) -> None:
        for csv_path in sorted(self.directory.glob('*.csv')):
            path = csv_path.stem.replace('__', '/')
            df = pd.read_csv(csv_path, dtype=str)
            docs = {}
            for _, row in df.iterrows():
                doc_id = row.get('id')
                if pd.isna(doc_id):
                    logger.warning(f"Skipping row without id in {csv_path.name}")
                    continue
                docs[str(doc_id)] = {k: (None if pd.isna(v) else v)
                                     for k, v in row.items() if k != 'id'}
            self._data[path] = docs
            logger.debug(f"Read {len(docs)} documents from {csv_path}")
        logger.info(f"Loaded {len(self._data)} collections from {self.directory}")

    def _persist(self, paths) -> None:
        """
        Write every touched collection to a temp file first, then move them
        all into place. A failed write leaves every CSV file as it was.
        """
        staged: List[Tuple[str, Optional[Path], Path]] = []
        try:
            for path in sorted(paths):
                csv_path = self._file_for(path)
                docs = self._data.get(path, {})
                if not docs:
                    staged.append((path, None, csv_path))
                    continue
                tmp_path = csv_path.with_name(csv_path.name + '.tmp')
                staged.append((path, tmp_path, csv_path))
                df = pd.DataFrame([{'id': doc_id, **doc} for doc_id, doc in docs.items()])
                df.to_csv(tmp_path, index=False)
        except Exception:
            for _, tmp_path, _ in staged:
                if tmp_path is not None and tmp_path.exists():
                    tmp_path.unlink()
            raise

        for path, tmp_path, csv_path in staged:
            if tmp_path is None:
                if csv_path.exists():
                    csv_path.unlink()
                continue
            os.replace(tmp_path, csv_path)
            logger.debug(f"Wrote {len(self._data[path])} documents to {csv_path}")
