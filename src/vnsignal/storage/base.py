"""
Abstract recommendation store.

Recommendations are append-only: a store assigns an id on ``persist`` and
serves the record back by id.  There is no update or delete.
"""
from abc import ABC, abstractmethod
from typing import Optional

from src.vnsignal.data.schemas import Recommendation


class RecommendationStore(ABC):
    """Contract that every recommendation sink must satisfy."""

    @abstractmethod
    def persist(self, recommendation: Recommendation) -> str:
        """Write *recommendation* and return its new id.

        Raises:
            PersistenceError: If the record could not be written.
        """

    @abstractmethod
    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        """Return the stored record, or ``None`` if the id is unknown.

        Raises:
            PersistenceError: If the store cannot be read.
        """
