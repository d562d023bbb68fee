# ═══════════════════════════════════════════════════════════════════════════════
# MOLTBOOK CLIENT
# Discussion-board source of interactions and sink for replies
# ═══════════════════════════════════════════════════════════════════════════════

"""
Thin REST wrapper. Every request carries the key as a Bearer header; error
bodies are scrubbed of the key before they reach an exception or a log line.

Read calls used by the poll loop degrade to an empty list on failure so one
bad endpoint never stops the agent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests


logger = logging.getLogger(__name__)

FIRST_RUN_LIMIT = 5


class MoltbookAPIError(Exception):
    def __init__(self, status: int, path: str, body: str, api_key: Optional[str] = None):
        safe = body.replace(api_key, "[REDACTED]") if api_key else body
        self.status = status
        self.path = path
        super().__init__(f"Moltbook API {status} {path}: {safe[:200]}")


@dataclass
class Interaction:
    kind: str                   # "post" | "reply"
    id: Optional[str]
    query: str
    author: str
    post_id: Optional[str]


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _created_at(item: Dict[str, Any]) -> Optional[datetime]:
    return _parse_time(item.get("created_at") or item.get("createdAt"))


def _newer_than(items: List[Dict[str, Any]], since: Optional[str]) -> List[Dict[str, Any]]:
    if not since:
        return items[:FIRST_RUN_LIMIT]
    cutoff = _parse_time(since)
    if cutoff is None:
        return items[:FIRST_RUN_LIMIT]
    newer = []
    for item in items:
        created = _created_at(item)
        if created is None:
            continue
        # Mixed naive/aware stamps compare as naive
        if (created.tzinfo is None) != (cutoff.tzinfo is None):
            created, ref = created.replace(tzinfo=None), cutoff.replace(tzinfo=None)
        else:
            ref = cutoff
        if created > ref:
            newer.append(item)
    return newer


def _author(item: Dict[str, Any]) -> str:
    author = item.get("author")
    if isinstance(author, dict) and author.get("name"):
        return author["name"]
    return item.get("agent_name") or "unknown"


def _unwrap(data: Any, key: str) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        return data.get(key) or []
    return data or []


class MoltbookClient:

    def __init__(
        self,
        api_url: str,
        api_key: str,
        agent_name: str,
        submolt: str = "general",
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.agent_name = agent_name
        self.submolt = submolt
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self.session.request(
            method,
            f"{self.api_url}{path}",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            timeout=self.timeout,
            **kwargs,
        )
        if not response.ok:
            raise MoltbookAPIError(response.status_code, path, response.text, self.api_key)
        return response.json()

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_new_posts(self, since: Optional[str]) -> List[Dict[str, Any]]:
        try:
            data = self._request("GET", "/posts", params={
                "submolt": self.submolt, "sort": "new", "limit": 20,
            })
        except (MoltbookAPIError, requests.RequestException) as e:
            logger.error(f"Poll failed: {e}")
            return []
        return _newer_than(_unwrap(data, "posts"), since)

    def get_new_replies(self, since: Optional[str]) -> List[Dict[str, Any]]:
        try:
            data = self._request(
                "GET", f"/agents/{self.agent_name}/notifications", params={"limit": 20},
            )
        except (MoltbookAPIError, requests.RequestException) as e:
            # Not every board version exposes notifications
            logger.debug(f"Notifications unavailable: {e}")
            return []
        return _newer_than(_unwrap(data, "notifications"), since)

    def get_posts_page(self, submolt: str, page: int = 1, limit: int = 20) -> List[Dict[str, Any]]:
        try:
            data = self._request("GET", "/posts", params={
                "submolt": submolt, "sort": "new", "limit": limit, "page": page,
            })
        except (MoltbookAPIError, requests.RequestException) as e:
            logger.error(f"Fetch page {page} of {submolt} failed: {e}")
            return []
        return _unwrap(data, "posts")

    def get_post_comments(self, post_id: str) -> List[Dict[str, Any]]:
        try:
            data = self._request("GET", f"/posts/{post_id}/comments", params={"limit": 50})
        except (MoltbookAPIError, requests.RequestException) as e:
            logger.debug(f"Comments for {post_id} unavailable: {e}")
            return []
        return _unwrap(data, "comments")

    # ── Writes ───────────────────────────────────────────────────────────────

    def post_reply(self, post_id: str, content: str) -> Any:
        return self._request("POST", f"/posts/{post_id}/comments", json={"content": content})

    def create_post(self, title: str, content: str) -> Any:
        return self._request("POST", "/posts", json={
            "submolt": self.submolt, "title": title, "content": content,
        })


# ── Interaction Merging ──────────────────────────────────────────────────────


def collect_interactions(
    posts: List[Dict[str, Any]],
    replies: List[Dict[str, Any]],
    agent_name: str,
) -> List[Interaction]:
    """Normalize posts and notifications, skipping our own and empty ones."""
    interactions: List[Interaction] = []

    for post in posts:
        post_id = post.get("id") or post.get("_id")
        text = post.get("content") or post.get("body") or ""
        title = post.get("title") or ""
        author = _author(post)
        if text and author != agent_name:
            interactions.append(Interaction(
                "post", post_id, f"{title} {text}".strip(), author, post_id,
            ))

    for notif in replies:
        comment = notif.get("comment") or {}
        text = notif.get("content") or notif.get("body") or comment.get("content") or ""
        post_id = notif.get("post_id") or notif.get("postId") or comment.get("post_id")
        author = _author(notif)
        if text and author != agent_name:
            interactions.append(Interaction("reply", notif.get("id"), text, author, post_id))

    return interactions
