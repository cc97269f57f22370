"""
Local JSON-file recommendation store.

All records live in a single JSON object keyed by id.  Writes go through
a temporary file and an atomic rename, under an instance lock, so that
concurrent pipeline workers cannot interleave partial documents.
"""
import json
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from src.vnsignal.data.schemas import Recommendation
from src.vnsignal.errors import PersistenceError
from src.vnsignal.storage.base import RecommendationStore


class JsonFileRecommendationStore(RecommendationStore):
    """Append-only store backed by one JSON document."""

    def __init__(self, file_path: str = "outcomes/recommendations.json"):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, dict]:
        if not self.file_path.exists():
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Cannot read recommendation store {self.file_path}: {e}")
            raise PersistenceError(f"unreadable store {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"store {self.file_path} is not a JSON object")
        return data

    def persist(self, recommendation: Recommendation) -> str:
        rec_id = recommendation.id or uuid.uuid4().hex
        record = recommendation.model_copy(update={"id": rec_id})

        with self._lock:
            records = self._read_all()
            records[rec_id] = record.model_dump(mode="json")

            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.file_path.with_suffix(".tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(records, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self.file_path)
            except OSError as e:
                logger.error(f"{recommendation.symbol}: write to {self.file_path} failed: {e}")
                raise PersistenceError(f"cannot write {self.file_path}: {e}") from e

        logger.success(f"{recommendation.symbol}: recommendation {rec_id} saved locally")
        return rec_id

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        with self._lock:
            raw = self._read_all().get(recommendation_id)
        if raw is None:
            return None
        try:
            return Recommendation.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError(f"corrupt record {recommendation_id}: {e}") from e

    def list_all(self) -> List[Recommendation]:
        with self._lock:
            records = self._read_all()
        return [Recommendation.model_validate(r) for r in records.values()]
