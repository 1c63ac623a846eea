"""EWS client — SOAP over HTTPS with NTLM, behind a typed async API."""

import logging
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from httpx_ntlm import HttpNtlmAuth

from mailwatch.ews import envelopes
from mailwatch.ews.types import MessageCandidate, MessageDetail

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT_SECONDS = 30.0

# A parsed XML node: leaf text, a dict of children/attributes, or a list of
# repeated siblings.  Attributes are stored under "@Name", mixed text under "#text".
_Node = dict[str, Any] | list[Any] | str


class ProtocolError(Exception):
    """Raised on transport, auth or response-shape failures talking to EWS."""


@dataclass(frozen=True)
class EwsCredentials:
    """NTLM credentials.  ``domain`` and ``workstation`` are optional qualifiers."""

    username: str
    password: str
    domain: str | None = None
    workstation: str | None = None

    @property
    def principal(self) -> str:
        """Username in the ``DOMAIN\\user`` form NTLM expects."""
        if self.domain and "\\" not in self.username:
            return f"{self.domain}\\{self.username}"
        return self.username


# ── XML helpers ────────────────────────────────────────────────────────────────


def _local_name(tag: str) -> str:
    """Strip ``{namespace}`` and ``prefix:`` qualifiers from a tag or attribute."""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]


def _element_to_node(element: ET.Element) -> _Node:
    children = list(element)
    text = (element.text or "").strip()
    if not children and not element.attrib:
        return text

    node: dict[str, Any] = {f"@{_local_name(k)}": v for k, v in element.attrib.items()}
    if text:
        node["#text"] = text
    for child in children:
        key = _local_name(child.tag)
        value = _element_to_node(child)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]
    return node


def parse_envelope(xml_text: str) -> dict[str, Any]:
    """Parse a SOAP response into nested dicts keyed by un-prefixed tag names.

    Returns the content of ``Envelope/Body``.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ProtocolError(f"Malformed XML from EWS: {exc}") from exc

    envelope = _element_to_node(root)
    body = envelope.get("Body") if isinstance(envelope, dict) else None
    if not isinstance(body, dict):
        raise ProtocolError("EWS response has no SOAP Body")
    return body


def as_list(value: Any) -> list[Any]:
    """Normalise a single element, repeated elements or nothing to a list."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(node: Any, default: str = "") -> str:
    if isinstance(node, str):
        return node
    if isinstance(node, dict):
        return str(node.get("#text", default))
    return default


def parse_ews_datetime(raw: str) -> datetime:
    """Convert an xs:dateTime (``2024-01-15T10:30:00Z``) to an aware datetime."""
    try:
        value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ProtocolError(f"Unparseable EWS timestamp {raw!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _mailbox_address(node: Any) -> str:
    """Return the address (or display name) of a ``<Mailbox>`` wrapper node."""
    if not isinstance(node, dict):
        return ""
    mailbox = node.get("Mailbox", node)
    if isinstance(mailbox, list):
        mailbox = mailbox[0] if mailbox else {}
    if not isinstance(mailbox, dict):
        return ""
    return _text(mailbox.get("EmailAddress")) or _text(mailbox.get("Name"))


# ── Client ─────────────────────────────────────────────────────────────────────


class EwsClient:
    """Thin async wrapper around the EWS operations the watcher needs.

    Every operation goes through ``_call``: post an XML envelope, check the
    HTTP status and EWS response code, hand back the parsed response message.
    The client keeps no per-message state; change keys are passed in by the
    caller on every update.
    """

    def __init__(self, http: httpx.AsyncClient, url: str) -> None:
        self._http = http
        self._url = url

    # ── Public API ─────────────────────────────────────────────────────────────

    async def find_unread_candidates(self, folder: str) -> list[MessageCandidate]:
        """Return up to one page of unread messages in ``folder``.

        An empty folder yields ``[]``, not an error.
        """
        folder_xml = await self._folder_xml(folder)
        message = await self._call("FindItem", envelopes.find_unread_items(folder_xml))

        root_folder = message.get("RootFolder")
        if not isinstance(root_folder, dict):
            raise ProtocolError("FindItem response has no RootFolder")
        items = root_folder.get("Items")
        if not isinstance(items, dict):
            return []
        candidates: list[MessageCandidate] = []
        for node in as_list(items.get("Message")):
            try:
                candidates.append(self._parse_candidate(node))
            except ProtocolError as exc:
                # one unparseable item must not hide the rest of the page
                logger.error("Skipping unparseable FindItem message: %s", exc)
        return candidates

    async def fetch_detail(self, item_id: str, change_key: str) -> MessageDetail:
        """Return full properties and plain-text body of one message."""
        message = await self._call("GetItem", envelopes.get_item(item_id, change_key))

        items = message.get("Items")
        messages = as_list(items.get("Message")) if isinstance(items, dict) else []
        if not messages:
            raise ProtocolError(f"GetItem returned no message for {item_id}")
        return self._parse_detail(messages[0])

    async def mark_read(self, item_id: str, change_key: str) -> None:
        """Flip the read flag on the server.  Raises ProtocolError on any failure."""
        await self._call("UpdateItem", envelopes.mark_read(item_id, change_key))
        logger.debug("Marked message %s as read", item_id)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _folder_xml(self, folder: str) -> str:
        """Return the folder id element, resolving display names via FindFolder."""
        if folder.lower() in envelopes.DISTINGUISHED_FOLDERS:
            return envelopes.folder_id_xml(folder)

        message = await self._call("FindFolder", envelopes.find_folder(folder))
        root_folder = message.get("RootFolder")
        folders = root_folder.get("Folders") if isinstance(root_folder, dict) else None
        found = as_list(folders.get("Folder")) if isinstance(folders, dict) else []
        if not found:
            raise ProtocolError(f"Folder {folder!r} not found in mailbox")
        first = found[0] if isinstance(found[0], dict) else {}
        id_node = first.get("FolderId")
        folder_id = str(id_node.get("@Id", "")) if isinstance(id_node, dict) else ""
        if not folder_id:
            raise ProtocolError(f"Folder {folder!r} returned without an id")
        return envelopes.folder_id_xml(folder_id)

    async def _call(self, operation: str, envelope: str) -> dict[str, Any]:
        """Post an envelope and return its single ``<Operation>ResponseMessage``.

        Raises ProtocolError on transport errors, non-200 status, SOAP faults,
        malformed XML or an EWS error response code.
        """
        logger.debug("EWS → %s", operation)
        try:
            response = await self._http.post(
                self._url,
                content=envelope.encode("utf-8"),
                headers={"Content-Type": "text/xml; charset=utf-8"},
            )
        except httpx.HTTPError as exc:
            raise ProtocolError(f"{operation} transport error: {exc}") from exc

        if response.status_code != 200:
            detail = self._fault_string(response.text) or response.reason_phrase
            raise ProtocolError(
                f"{operation} failed with HTTP {response.status_code}: {detail}"
            )

        body = parse_envelope(response.text)
        if "Fault" in body:
            raise ProtocolError(f"{operation} SOAP fault: {self._fault_string(response.text)}")

        wrapper = body.get(f"{operation}Response")
        messages = wrapper.get("ResponseMessages") if isinstance(wrapper, dict) else None
        message = messages.get(f"{operation}ResponseMessage") if isinstance(messages, dict) else None
        if isinstance(message, list):
            message = message[0] if message else None
        if not isinstance(message, dict):
            raise ProtocolError(f"{operation} response has no ResponseMessage")

        code = _text(message.get("ResponseCode"))
        if message.get("@ResponseClass") == "Error" or (code and code != "NoError"):
            text = _text(message.get("MessageText"))
            raise ProtocolError(f"{operation} returned {code or 'Error'}: {text}")
        return message

    @staticmethod
    def _fault_string(xml_text: str) -> str:
        """Best-effort extraction of ``faultstring`` from a SOAP fault body."""
        try:
            body = parse_envelope(xml_text)
        except ProtocolError:
            return ""
        fault = body.get("Fault")
        if isinstance(fault, dict):
            return _text(fault.get("faultstring"))
        return ""

    @staticmethod
    def _parse_item_id(node: dict[str, Any]) -> tuple[str, str]:
        item_id = node.get("ItemId")
        if not isinstance(item_id, dict) or not item_id.get("@Id"):
            raise ProtocolError("EWS item without ItemId")
        return str(item_id["@Id"]), str(item_id.get("@ChangeKey", ""))

    @staticmethod
    def _parse_candidate(node: Any) -> MessageCandidate:
        """Map a FindItem ``<Message>`` node to a MessageCandidate."""
        if not isinstance(node, dict):
            raise ProtocolError(f"Unexpected FindItem message shape: {node!r}")
        item_id, change_key = EwsClient._parse_item_id(node)
        return MessageCandidate(
            id=item_id,
            change_key=change_key,
            subject=_text(node.get("Subject")),
            sender=_mailbox_address(node.get("From")) or "unknown",
            received_at=parse_ews_datetime(_text(node.get("DateTimeReceived"))),
            is_read=_text(node.get("IsRead")).lower() == "true",
        )

    @staticmethod
    def _parse_detail(node: Any) -> MessageDetail:
        """Map a GetItem ``<Message>`` node to a MessageDetail."""
        if not isinstance(node, dict):
            raise ProtocolError(f"Unexpected GetItem message shape: {node!r}")
        if "Body" not in node:
            raise ProtocolError("GetItem message has no Body")
        item_id, change_key = EwsClient._parse_item_id(node)

        to_node = node.get("ToRecipients")
        mailboxes = as_list(to_node.get("Mailbox")) if isinstance(to_node, dict) else []
        recipients = [a for a in (_mailbox_address(m) for m in mailboxes) if a]
        if not recipients:
            display_to = _text(node.get("DisplayTo"))
            recipients = [r.strip() for r in display_to.split(";") if r.strip()]

        return MessageDetail(
            id=item_id,
            change_key=change_key,
            subject=_text(node.get("Subject")),
            sender=_mailbox_address(node.get("From")) or "unknown",
            received_at=parse_ews_datetime(_text(node.get("DateTimeReceived"))),
            recipients=recipients,
            body_text=_text(node.get("Body")),
        )


@asynccontextmanager
async def ews_client(
    url: str,
    credentials: EwsCredentials,
    *,
    timeout: float = _REQUEST_TIMEOUT_SECONDS,
) -> AsyncIterator[EwsClient]:
    """Async context manager that yields an EwsClient over an NTLM-authenticated session.

    TLS certificates are always verified.

    Example::

        async with ews_client(url, EwsCredentials("user", "secret")) as ews:
            candidates = await ews.find_unread_candidates("inbox")
    """
    auth = HttpNtlmAuth(credentials.principal, credentials.password)
    async with httpx.AsyncClient(auth=auth, timeout=timeout, verify=True) as http:
        logger.info(
            "EWS client ready (%s as %s%s)",
            url,
            credentials.principal,
            f" from {credentials.workstation}" if credentials.workstation else "",
        )
        yield EwsClient(http, url)
