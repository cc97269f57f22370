"""
Firebase Realtime Database recommendation store.

Uses the plain REST interface: ``POST {base}/buyRecommendations.json``
creates a child with a generated key (returned as ``{"name": key}``), and
``GET {base}/buyRecommendations/{key}.json`` reads it back.  The database
secret, when given, is passed as the ``auth`` query parameter.
"""
from typing import Optional

import requests
from loguru import logger
from pydantic import ValidationError

from src.vnsignal.data.schemas import Recommendation
from src.vnsignal.errors import PersistenceError
from src.vnsignal.storage.base import RecommendationStore


class FirebaseRecommendationStore(RecommendationStore):
    NODE = "buyRecommendations"

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15,
    ):
        if not base_url:
            raise ValueError("FirebaseRecommendationStore requires 'base_url'")
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _params(self):
        return {"auth": self.auth_token} if self.auth_token else None

    def persist(self, recommendation: Recommendation) -> str:
        url = f"{self.base_url}/{self.NODE}.json"
        body = recommendation.model_dump(mode="json", exclude={"id"})

        try:
            resp = self.session.post(url, json=body, params=self._params(), timeout=self.timeout)
            resp.raise_for_status()
            key = resp.json().get("name")
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.error(f"{recommendation.symbol}: Firebase write failed: {e}")
            raise PersistenceError(f"Firebase write failed: {e}") from e

        if not key:
            raise PersistenceError("Firebase response carried no generated key")

        logger.success(f"{recommendation.symbol}: recommendation {key} saved to Firebase")
        return key

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        url = f"{self.base_url}/{self.NODE}/{recommendation_id}.json"
        try:
            resp = self.session.get(url, params=self._params(), timeout=self.timeout)
            resp.raise_for_status()
            raw = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise PersistenceError(f"Firebase read failed: {e}") from e

        if raw is None:
            return None
        try:
            return Recommendation.model_validate({**raw, "id": recommendation_id})
        except (ValidationError, TypeError) as e:
            raise PersistenceError(f"corrupt record {recommendation_id}: {e}") from e
