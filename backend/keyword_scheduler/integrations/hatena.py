"""Hatena Blog AtomPub publisher.

Entries are posted as Atom XML with app:draft=no. The entry id is the last
path segment of the rel="edit" link; the public URL is the rel="alternate"
link of the fetched entry.
"""

import xml.etree.ElementTree as ET

import httpx

from keyword_scheduler.core.logging import get_logger
from keyword_scheduler.integrations.base import PostPayload
from keyword_scheduler.integrations.wordpress import PublishError, send
from keyword_scheduler.schemas.settings import HatenaTarget

logger = get_logger(__name__)

HATENA_BLOG_URL = "https://blog.hatena.ne.jp"
ATOM_NS = "http://www.w3.org/2005/Atom"
APP_NS = "http://www.w3.org/2007/app"


def build_entry_xml(payload: PostPayload, author: str) -> bytes:
    ET.register_namespace("", ATOM_NS)
    ET.register_namespace("app", APP_NS)
    entry = ET.Element(f"{{{ATOM_NS}}}entry")
    ET.SubElement(entry, f"{{{ATOM_NS}}}title").text = payload.title
    author_el = ET.SubElement(entry, f"{{{ATOM_NS}}}author")
    ET.SubElement(author_el, f"{{{ATOM_NS}}}name").text = author
    content = ET.SubElement(entry, f"{{{ATOM_NS}}}content", {"type": "text/html"})
    content.text = payload.content
    control = ET.SubElement(entry, f"{{{APP_NS}}}control")
    ET.SubElement(control, f"{{{APP_NS}}}draft").text = "no"
    return ET.tostring(entry, encoding="utf-8", xml_declaration=True)


def find_link(xml_text: str, rel: str) -> str | None:
    """Return the href of the entry link with the given rel."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise PublishError(f"Invalid AtomPub response: {e}") from e
    for link in root.findall(f"{{{ATOM_NS}}}link"):
        if link.get("rel") == rel:
            return link.get("href")
    return None


class HatenaPublisher:
    """Publishes entries to a Hatena blog through AtomPub."""

    def __init__(
        self,
        target: HatenaTarget,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._target = target
        self._collection_url = (
            f"{HATENA_BLOG_URL}/{target.hatena_id}/{target.blog_id}/atom/entry"
        )
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=httpx.BasicAuth(self._target.hatena_id, self._target.api_key),
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, payload: PostPayload) -> str:
        """Publish an entry and return its entry id."""
        client = await self._get_client()
        response = await send(
            client,
            "POST",
            self._collection_url,
            content=build_entry_xml(payload, self._target.hatena_id),
            headers={"Content-Type": "application/xml"},
        )
        edit_url = find_link(response.text, "edit")
        if not edit_url:
            raise PublishError("AtomPub response did not include an edit link")
        return edit_url.rstrip("/").rsplit("/", 1)[-1]

    async def get_url(self, post_id: str) -> str:
        client = await self._get_client()
        response = await send(client, "GET", f"{self._collection_url}/{post_id}")
        url = find_link(response.text, "alternate")
        if not url:
            raise PublishError(f"Hatena entry {post_id} has no alternate link")
        return url
