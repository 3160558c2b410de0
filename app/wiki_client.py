"""
CSC wiki client: attaches teacher-provided links to a subject's wiki page.
"""
import logging
import threading
from typing import Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger("wiki_client")


class WikiServiceError(Exception):
    """The wiki service could not be reached or rejected the request."""


def page_title_from_link(link_to_csc: Optional[str]) -> str:
    """
    Wiki page title of a subject: the last path segment of its CSC link.

    Raises:
        ValueError: If the subject has no usable CSC link
    """
    if not link_to_csc:
        raise ValueError("Subject has no CSC link")
    path = urlparse(link_to_csc).path
    title = path[path.rfind("/") + 1:]
    if not title:
        raise ValueError(f"Cannot derive wiki page title from {link_to_csc!r}")
    return title


class WikiClient:
    """Thin wrapper over the wiki's append-link endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout
        self._session = session or requests.Session()

    def append_link(self, section_id: str, link: str, tag_name: str, title: str) -> None:
        """
        Raises:
            WikiServiceError: On transport errors or a non-2xx response
        """
        payload = {"section": section_id, "link": link, "tag": tag_name, "title": title}
        try:
            response = self._session.post(
                self.base_url + "append-link",
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Invalid post of tag {tag_name} to section {section_id}: {e}")
            raise WikiServiceError(str(e)) from e

        logger.info(f"Added link to CSC wiki: {title}/{section_id} ({response.status_code})")


_wiki_client: Optional[WikiClient] = None
_wiki_client_lock = threading.Lock()


def get_wiki_client() -> WikiClient:
    """Get or create the global wiki client."""
    global _wiki_client
    if _wiki_client is None:
        with _wiki_client_lock:
            if _wiki_client is None:
                from config.settings import settings
                _wiki_client = WikiClient(settings.wiki_service_url, timeout=settings.wiki_request_timeout)
    return _wiki_client
