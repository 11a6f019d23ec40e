"""
FAISS Vector Index
-------------------
A single global collection of chunk vectors with payload filtering.

The index stores:
  - A FAISS IndexIDMap2 over IndexFlatIP (inner product == cosine similarity
    after L2 normalisation) keyed by internal int64 ids
  - A payload table (DocumentChunk per point) plus secondary payload indices
    on version_id and file_id, so filtered searches and deletes never scan
    the whole collection

Version isolation: search() builds a FAISS ID selector from the version_id
payload index and hands it to the search call, so vectors of other versions
are excluded BEFORE ranking.

Persistence (when persist_dir is set, rewritten after every mutation):
  - FAISS index -> <persist_dir>/faiss.index
  - Payloads -> <persist_dir>/payloads.json
  - Manifest -> <persist_dir>/index_manifest.json
"""
from __future__ import annotations

import asyncio
import threading
from functools import partial
from pathlib import Path
from typing import Callable, Optional, TypeVar

import faiss
import numpy as np
from loguru import logger

from codegen_rag.errors import VectorIndexError
from codegen_rag.schemas import DocumentChunk, SearchHit, VectorPoint
from codegen_rag.utils.helpers import ensure_dirs, load_json, save_json

T = TypeVar("T")

INDEXED_FIELDS = ("version_id", "file_id")
DISTANCES = ("cosine", "dot")

FAISS_FILE = "faiss.index"
PAYLOADS_FILE = "payloads.json"
MANIFEST_FILE = "index_manifest.json"


def _l2_normalise(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms = np.where(norms == 0, 1, norms)  # avoid div-by-zero
    return (matrix / norms).astype(np.float32)


class VectorIndex:
    """
    Shared vector collection for every version.

    Call ensure_collection() once before use.  All public methods are
    coroutines; FAISS work runs in the default executor under a lock.
    """

    def __init__(self, persist_dir: Optional[str | Path] = None) -> None:
        self.persist_dir = Path(persist_dir) if persist_dir else None
        self.dimensions: Optional[int] = None
        self.distance: str = "cosine"
        self._index: Optional[faiss.IndexIDMap2] = None
        self._payloads: dict[int, tuple[str, DocumentChunk]] = {}
        self._ids: dict[str, int] = {}
        self._payload_index: dict[str, dict[str, set[int]]] = {}
        self._next_id: int = 0
        self._lock = threading.Lock()

    # --- Lifecycle ------------------------------------------------------------

    async def ensure_collection(self, dimensions: int, distance: str = "cosine") -> None:
        """Create the collection if absent (or mismatched) and its payload indices."""
        if distance not in DISTANCES:
            raise VectorIndexError(f"Unsupported distance metric: {distance!r}", stage="vector_index")
        await self._run(self._ensure_collection_sync, dimensions, distance)

    def _ensure_collection_sync(self, dimensions: int, distance: str) -> None:
        with self._lock:
            if self._index is not None and self.dimensions == dimensions and self.distance == distance:
                self._ensure_payload_indices()
                return

            if self._index is None and self.persist_dir and (self.persist_dir / MANIFEST_FILE).exists():
                self._load()

            if self._index is not None and (self.dimensions != dimensions or self.distance != distance):
                logger.warning(
                    f"[VectorIndex] Collection is {self.dimensions}d/{self.distance}, "
                    f"expected {dimensions}d/{distance} -- recreating (all points dropped)"
                )
                self._index = None

            if self._index is None:
                self._create(dimensions, distance)
                self._save()
                logger.info(f"[VectorIndex] Collection created: {dimensions}d, {distance}")

            self._ensure_payload_indices()

    def _create(self, dimensions: int, distance: str) -> None:
        self.dimensions = dimensions
        self.distance = distance
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimensions))
        self._payloads = {}
        self._ids = {}
        self._payload_index = {}
        self._next_id = 0

    def _ensure_payload_indices(self) -> None:
        for field in INDEXED_FIELDS:
            if field in self._payload_index:
                continue
            index: dict[str, set[int]] = {}
            for internal_id, (_, payload) in self._payloads.items():
                index.setdefault(getattr(payload, field), set()).add(internal_id)
            self._payload_index[field] = index
            logger.debug(f"[VectorIndex] Payload index ready: {field} ({len(index)} values)")

    # --- Writes ---------------------------------------------------------------

    async def upsert(self, points: list[VectorPoint]) -> None:
        """Insert points; a point whose id already exists is replaced."""
        if not points:
            return
        await self._run(self._upsert_sync, points)

    def _upsert_sync(self, points: list[VectorPoint]) -> None:
        with self._lock:
            index = self._require_index()
            matrix = np.asarray([p.vector for p in points], dtype=np.float32)
            if matrix.ndim != 2 or matrix.shape[1] != self.dimensions:
                raise VectorIndexError(
                    f"Vector dimensionality {matrix.shape[-1]} does not match "
                    f"collection dimensionality {self.dimensions}",
                    stage="vector_index",
                )
            if self.distance == "cosine":
                matrix = _l2_normalise(matrix)

            replaced = [self._ids[p.id] for p in points if p.id in self._ids]
            if replaced:
                self._remove_internal(replaced)

            internal_ids = np.arange(self._next_id, self._next_id + len(points), dtype=np.int64)
            self._next_id += len(points)
            index.add_with_ids(np.ascontiguousarray(matrix), internal_ids)

            for internal_id, point in zip(internal_ids.tolist(), points):
                self._payloads[internal_id] = (point.id, point.payload)
                self._ids[point.id] = internal_id
                for field in INDEXED_FIELDS:
                    self._payload_index[field].setdefault(getattr(point.payload, field), set()).add(internal_id)

            self._save()
        logger.debug(f"[VectorIndex] Upserted {len(points)} points ({len(replaced)} replaced)")

    async def delete_by_file_id(self, file_id: str) -> int:
        return await self._run(self._delete_by_field_sync, "file_id", file_id)

    async def delete_by_version_id(self, version_id: str) -> int:
        return await self._run(self._delete_by_field_sync, "version_id", version_id)

    def _delete_by_field_sync(self, field: str, value: str) -> int:
        with self._lock:
            self._require_index()
            internal_ids = list(self._payload_index[field].get(value, ()))
            if internal_ids:
                self._remove_internal(internal_ids)
                self._save()
        logger.info(f"[VectorIndex] Deleted {len(internal_ids)} points where {field}={value!r}")
        return len(internal_ids)

    def _remove_internal(self, internal_ids: list[int]) -> None:
        self._index.remove_ids(np.asarray(internal_ids, dtype=np.int64))
        for internal_id in internal_ids:
            point_id, payload = self._payloads.pop(internal_id)
            self._ids.pop(point_id, None)
            for field in INDEXED_FIELDS:
                bucket = self._payload_index[field].get(getattr(payload, field))
                if bucket is not None:
                    bucket.discard(internal_id)
                    if not bucket:
                        del self._payload_index[field][getattr(payload, field)]

    # --- Search ---------------------------------------------------------------

    async def search(self, query_vector: list[float], version_id: str, top_k: int = 5) -> list[SearchHit]:
        """
        Return the top_k most similar points whose version_id matches exactly.

        Returns: SearchHits sorted by score descending (empty if the version
        has no points).
        """
        return await self._run(self._search_sync, query_vector, version_id, top_k)

    def _search_sync(self, query_vector: list[float], version_id: str, top_k: int) -> list[SearchHit]:
        with self._lock:
            index = self._require_index()
            candidates = self._payload_index["version_id"].get(version_id)
            if not candidates or top_k <= 0:
                return []

            qv = np.asarray(query_vector, dtype=np.float32).reshape(1, -1)
            if qv.shape[1] != self.dimensions:
                raise VectorIndexError(
                    f"Query vector has {qv.shape[1]} dimensions, expected {self.dimensions}",
                    stage="vector_index",
                )
            if self.distance == "cosine":
                qv = _l2_normalise(qv)

            allowed = np.fromiter(candidates, dtype=np.int64, count=len(candidates))
            selector = faiss.IDSelectorBatch(len(allowed), faiss.swig_ptr(allowed))
            params = faiss.SearchParameters()
            params.sel = selector

            k = min(top_k, len(allowed))
            scores, ids = index.search(np.ascontiguousarray(qv), k, params=params)

            hits: list[SearchHit] = []
            for score, internal_id in zip(scores[0], ids[0]):
                if internal_id < 0:
                    continue
                point_id, payload = self._payloads[int(internal_id)]
                hits.append(SearchHit(id=point_id, payload=payload, score=float(score)))
            return hits

    # --- Introspection --------------------------------------------------------

    async def count(self, version_id: Optional[str] = None) -> int:
        return await self._run(self._count_sync, version_id)

    def _count_sync(self, version_id: Optional[str]) -> int:
        with self._lock:
            self._require_index()
            if version_id is None:
                return len(self._payloads)
            return len(self._payload_index["version_id"].get(version_id, ()))

    async def health_check(self) -> bool:
        """Lightweight check used by the external health endpoint."""
        try:
            await self._run(self._health_sync)
            return True
        except VectorIndexError as exc:
            logger.warning(f"[VectorIndex] Health check failed: {exc}")
            return False

    def _health_sync(self) -> None:
        with self._lock:
            index = self._require_index()
            if index.ntotal != len(self._payloads):
                raise VectorIndexError(
                    f"Index holds {index.ntotal} vectors but {len(self._payloads)} payloads",
                    stage="vector_index",
                )
            if self.persist_dir and not self.persist_dir.is_dir():
                raise VectorIndexError(f"Index directory missing: {self.persist_dir}", stage="vector_index")

    # --- Persistence ----------------------------------------------------------

    def _save(self) -> None:
        if self.persist_dir is None:
            return
        ensure_dirs(self.persist_dir)
        faiss.write_index(self._index, str(self.persist_dir / FAISS_FILE))
        save_json(
            [
                {"internal_id": internal_id, "id": point_id, "payload": payload.model_dump(mode="json")}
                for internal_id, (point_id, payload) in self._payloads.items()
            ],
            self.persist_dir / PAYLOADS_FILE,
        )
        save_json(
            {
                "dimensions": self.dimensions,
                "distance": self.distance,
                "total_points": len(self._payloads),
                "next_id": self._next_id,
            },
            self.persist_dir / MANIFEST_FILE,
        )

    def _load(self) -> None:
        manifest = load_json(self.persist_dir / MANIFEST_FILE)
        self.dimensions = int(manifest["dimensions"])
        self.distance = manifest.get("distance", "cosine")
        self._next_id = int(manifest.get("next_id", 0))
        self._index = faiss.read_index(str(self.persist_dir / FAISS_FILE))

        self._payloads = {}
        self._ids = {}
        self._payload_index = {}
        for record in load_json(self.persist_dir / PAYLOADS_FILE):
            internal_id = int(record["internal_id"])
            self._payloads[internal_id] = (record["id"], DocumentChunk(**record["payload"]))
            self._ids[record["id"]] = internal_id

        logger.info(
            f"[VectorIndex] Loaded {self._index.ntotal} vectors, "
            f"{len(self._payloads)} payloads from {self.persist_dir}"
        )

    # --- Helpers --------------------------------------------------------------

    def _require_index(self) -> faiss.IndexIDMap2:
        if self._index is None:
            raise VectorIndexError("Collection not initialised; call ensure_collection() first", stage="vector_index")
        return self._index

    async def _run(self, fn: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args))
        except VectorIndexError:
            raise
        except (RuntimeError, ValueError, OSError, KeyError) as exc:
            logger.error(f"[VectorIndex] {fn.__name__} failed: {exc}")
            raise VectorIndexError(f"Vector index operation failed: {exc}", stage="vector_index") from exc
