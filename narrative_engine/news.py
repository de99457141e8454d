"""News sources used as context for prediction generation and resolution."""
from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_NEWS_API_BASE = "https://newsapi.org/v2"


@dataclass
class NewsArticle:
    title: str
    description: str = ""
    source: str = ""
    url: str = ""
    published_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "source": self.source,
            "url": self.url,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
        }


class NewsSource:
    """Interface: return recent articles matching a query. Never raises."""

    def fetch(self, query: str, *, since: datetime, limit: int) -> List[NewsArticle]:
        raise NotImplementedError


class StaticNewsSource(NewsSource):
    """In-memory source, for tests and offline runs."""

    def __init__(self, articles: Iterable[NewsArticle] = ()) -> None:
        self._articles = list(articles)

    def fetch(self, query: str, *, since: datetime, limit: int) -> List[NewsArticle]:
        terms = [term.lower() for term in query.split() if term]
        selected = []
        for article in self._articles:
            if article.published_at is not None and article.published_at < since:
                continue
            haystack = f"{article.title} {article.description}".lower()
            if terms and not any(term in haystack for term in terms):
                continue
            selected.append(article)
        return selected[:limit]


class NewsAPISource(NewsSource):
    """Client for the NewsAPI ``everything`` endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_NEWS_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_env(cls) -> Optional["NewsAPISource"]:
        api_key = os.getenv("NEWS_API_KEY")
        if not api_key:
            return None
        return cls(api_key, base_url=os.getenv("NEWS_API_BASE", DEFAULT_NEWS_API_BASE))

    def fetch(self, query: str, *, since: datetime, limit: int) -> List[NewsArticle]:
        params = urllib.parse.urlencode(
            {
                "q": query,
                "from": since.date().isoformat(),
                "sortBy": "relevancy",
                "language": "en",
                "pageSize": limit,
            }
        )
        request = urllib.request.Request(
            f"{self._base_url}/everything?{params}",
            headers={"X-Api-Key": self._api_key},
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                document = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError:
            logger.exception("News API request failed")
            return []
        except json.JSONDecodeError:
            logger.exception("News API returned invalid JSON")
            return []

        articles = []
        for entry in document.get("articles") or []:
            published = entry.get("publishedAt")
            try:
                published_at = datetime.fromisoformat(published.replace("Z", "+00:00")) if published else None
            except ValueError:
                published_at = None
            articles.append(
                NewsArticle(
                    title=str(entry.get("title") or ""),
                    description=str(entry.get("description") or ""),
                    source=str((entry.get("source") or {}).get("name") or ""),
                    url=str(entry.get("url") or ""),
                    published_at=published_at,
                )
            )
        return articles[:limit]


def recent_articles(
    source: Optional[NewsSource],
    query: str,
    *,
    now: datetime,
    window_days: int = 7,
    limit: int = 3,
) -> List[NewsArticle]:
    if source is None:
        return []
    return source.fetch(query, since=now - timedelta(days=window_days), limit=limit)


__all__ = [
    "NewsArticle",
    "NewsSource",
    "StaticNewsSource",
    "NewsAPISource",
    "recent_articles",
]
