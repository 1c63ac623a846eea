"""SOAP request builders for the EWS operations the watcher needs."""

from xml.sax.saxutils import quoteattr

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
TYPES_NS = "http://schemas.microsoft.com/exchange/services/2006/types"
MESSAGES_NS = "http://schemas.microsoft.com/exchange/services/2006/messages"

#: Server version announced in every request header.
SERVER_VERSION = "Exchange2013"

#: Upper bound on items returned by one FindItem call.
PAGE_SIZE = 20

# EWS distinguished folder ids (lower-case).  Any other folder name is looked
# up by display name with FindFolder.
DISTINGUISHED_FOLDERS = frozenset({
    "inbox",
    "drafts",
    "sentitems",
    "deleteditems",
    "junkemail",
    "outbox",
    "archiveinbox",
    "msgfolderroot",
})


def _envelope(body: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soap:Envelope xmlns:soap="{SOAP_NS}" xmlns:t="{TYPES_NS}" xmlns:m="{MESSAGES_NS}">'
        "<soap:Header>"
        f'<t:RequestServerVersion Version="{SERVER_VERSION}"/>'
        "</soap:Header>"
        f"<soap:Body>{body}</soap:Body>"
        "</soap:Envelope>"
    )


def _item_id(item_id: str, change_key: str) -> str:
    return f"<t:ItemId Id={quoteattr(item_id)} ChangeKey={quoteattr(change_key)}/>"


def folder_id_xml(folder: str) -> str:
    """Return the ``ParentFolderIds`` child element for a folder reference.

    Distinguished names (``inbox``) are sent as such; anything else is assumed
    to be an opaque EWS folder id already resolved by FindFolder.
    """
    if folder.lower() in DISTINGUISHED_FOLDERS:
        return f"<t:DistinguishedFolderId Id={quoteattr(folder.lower())}/>"
    return f"<t:FolderId Id={quoteattr(folder)}/>"


def find_folder(display_name: str) -> str:
    """Deep search under the mailbox root for a folder with this display name."""
    return _envelope(
        '<m:FindFolder Traversal="Deep">'
        "<m:FolderShape><t:BaseShape>IdOnly</t:BaseShape>"
        '<t:AdditionalProperties><t:FieldURI FieldURI="folder:DisplayName"/></t:AdditionalProperties>'
        "</m:FolderShape>"
        "<m:Restriction><t:IsEqualTo>"
        '<t:FieldURI FieldURI="folder:DisplayName"/>'
        f"<t:FieldURIOrConstant><t:Constant Value={quoteattr(display_name)}/></t:FieldURIOrConstant>"
        "</t:IsEqualTo></m:Restriction>"
        '<m:ParentFolderIds><t:DistinguishedFolderId Id="msgfolderroot"/></m:ParentFolderIds>'
        "</m:FindFolder>"
    )


def find_unread_items(folder_xml: str, page_size: int = PAGE_SIZE) -> str:
    """FindItem restricted to unread messages, newest first, one bounded page."""
    return _envelope(
        '<m:FindItem Traversal="Shallow">'
        "<m:ItemShape><t:BaseShape>IdOnly</t:BaseShape>"
        "<t:AdditionalProperties>"
        '<t:FieldURI FieldURI="item:Subject"/>'
        '<t:FieldURI FieldURI="message:From"/>'
        '<t:FieldURI FieldURI="item:DateTimeReceived"/>'
        '<t:FieldURI FieldURI="message:IsRead"/>'
        "</t:AdditionalProperties></m:ItemShape>"
        f'<m:IndexedPageItemView MaxEntriesReturned="{int(page_size)}" Offset="0" BasePoint="Beginning"/>'
        "<m:Restriction><t:IsEqualTo>"
        '<t:FieldURI FieldURI="message:IsRead"/>'
        '<t:FieldURIOrConstant><t:Constant Value="false"/></t:FieldURIOrConstant>'
        "</t:IsEqualTo></m:Restriction>"
        "<m:SortOrder>"
        '<t:FieldOrder Order="Descending"><t:FieldURI FieldURI="item:DateTimeReceived"/></t:FieldOrder>'
        "</m:SortOrder>"
        f"<m:ParentFolderIds>{folder_xml}</m:ParentFolderIds>"
        "</m:FindItem>"
    )


def get_item(item_id: str, change_key: str) -> str:
    """GetItem for one message with its body rendered as plain text."""
    return _envelope(
        "<m:GetItem>"
        "<m:ItemShape><t:BaseShape>Default</t:BaseShape>"
        "<t:BodyType>Text</t:BodyType>"
        "<t:AdditionalProperties>"
        '<t:FieldURI FieldURI="item:Body"/>'
        '<t:FieldURI FieldURI="message:ToRecipients"/>'
        '<t:FieldURI FieldURI="item:DisplayTo"/>'
        '<t:FieldURI FieldURI="item:DateTimeReceived"/>'
        "</t:AdditionalProperties></m:ItemShape>"
        f"<m:ItemIds>{_item_id(item_id, change_key)}</m:ItemIds>"
        "</m:GetItem>"
    )


def mark_read(item_id: str, change_key: str) -> str:
    """UpdateItem that sets message:IsRead to true."""
    return _envelope(
        '<m:UpdateItem MessageDisposition="SaveOnly" ConflictResolution="AutoResolve">'
        "<m:ItemChanges><t:ItemChange>"
        f"{_item_id(item_id, change_key)}"
        "<t:Updates><t:SetItemField>"
        '<t:FieldURI FieldURI="message:IsRead"/>'
        "<t:Message><t:IsRead>true</t:IsRead></t:Message>"
        "</t:SetItemField></t:Updates>"
        "</t:ItemChange></m:ItemChanges>"
        "</m:UpdateItem>"
    )
