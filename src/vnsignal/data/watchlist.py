"""
Watch-list sources.

A watch-list is the candidate symbol set fed into one pipeline run.  Two
sources are supported:

* ``JsonWatchlistProvider`` reads named lists from a local JSON file and
  validates them up front.  The file is loaded eagerly so configuration
  errors surface before any market data is requested.

  Expected JSON structure::

      {
        "vn30":    ["ACB", "FPT", "HPG", "MWG", "VCB"],
        "default": ["FPT"]
      }

* ``FirebaseWatchlistProvider`` reads the golden-cross scanner output from
  a Firebase Realtime Database node (``goldenCross.json``) and returns the
  most recent crosses first.
"""
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import requests
from loguru import logger

from src.vnsignal.errors import UpstreamFetchError


class WatchlistProvider(ABC):
    """Contract for candidate symbol sources."""

    @abstractmethod
    def fetch_candidate_watchlist(self, limit: int) -> List[str]:
        """Return at most *limit* symbols, in priority order.

        Raises:
            UpstreamFetchError: If the source cannot be read.
        """


class JsonWatchlistProvider(WatchlistProvider):
    """Serves one named watch-list from a local JSON file."""

    def __init__(
        self,
        watchlist_name: str = "default",
        watchlist_file: str = "watchlists/watchlists.json",
    ):
        """
        Args:
            watchlist_name: Key of the list to serve.
            watchlist_file: Definitions file.  Relative paths resolve
                            against the current working directory.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not valid JSON, or is not an object
                        mapping list names to lists of ticker strings.
        """
        path = Path(watchlist_file)
        self.watchlist_name = watchlist_name
        self.file_path = path if path.is_absolute() else Path.cwd() / path
        self.lists = self._read_definitions(self.file_path)

    @staticmethod
    def _read_definitions(path: Path) -> Dict[str, List[str]]:
        if not path.is_file():
            logger.critical(f"Watch-list file not found at: {path}")
            raise FileNotFoundError(f"Missing watch-list definition file: {path}")

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.critical(f"Invalid JSON in watch-list file {path}: {e}")
            raise ValueError(f"Corrupted watch-list definition file: {path}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"{path}: top level must be an object of named lists")

        lists: Dict[str, List[str]] = {}
        for name, entries in raw.items():
            if not isinstance(entries, list):
                raise ValueError(f"{path}: watch-list '{name}' must be a list")
            tickers = []
            for entry in entries:
                if not isinstance(entry, str) or not entry.strip():
                    raise ValueError(
                        f"{path}: watch-list '{name}' holds a non-ticker entry {entry!r}"
                    )
                tickers.append(entry.strip().upper())
            lists[name] = tickers

        logger.info(f"Loaded {len(lists)} watch-list(s) from {path.name}")
        return lists

    def fetch_candidate_watchlist(self, limit: int) -> List[str]:
        symbols = self.lists.get(self.watchlist_name)
        if symbols is None:
            logger.error(
                f"Watch-list '{self.watchlist_name}' not found. "
                f"Available: {sorted(self.lists)}"
            )
            raise UpstreamFetchError(f"unknown watch-list: {self.watchlist_name}")

        logger.info(f"Selected watch-list '{self.watchlist_name}': {len(symbols)} symbols")
        return symbols[:limit]


class FirebaseWatchlistProvider(WatchlistProvider):
    """Reads golden-cross candidates from a Firebase Realtime Database."""

    NODE = "goldenCross"

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15,
    ):
        if not base_url:
            raise ValueError("FirebaseWatchlistProvider requires 'base_url'")
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_candidate_watchlist(self, limit: int) -> List[str]:
        url = f"{self.base_url}/{self.NODE}.json"
        params = {"auth": self.auth_token} if self.auth_token else None

        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Golden-cross watch-list fetch failed: {e}")
            raise UpstreamFetchError(f"watch-list fetch failed: {e}") from e

        if not payload:
            logger.warning("Golden-cross node is empty")
            return []
        if not isinstance(payload, dict):
            raise UpstreamFetchError(
                f"watch-list payload is {type(payload).__name__}, expected an object"
            )

        entries = [e for e in payload.values() if isinstance(e, dict) and e.get("ticker")]
        # Newest cross first; entries without a date sink to the end.
        entries.sort(
            key=lambda e: str(e.get("crossDate") or e.get("timeCross") or ""),
            reverse=True,
        )

        symbols = [str(e["ticker"]).upper() for e in entries]
        logger.info(f"Golden-cross watch-list: {len(symbols)} candidates")
        return symbols[:limit]
