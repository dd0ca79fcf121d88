"""Classify inbound webhook payload shapes.

The gateway delivers media in several shapes. Each recognised shape is an
explicit variant; anything else is ``Unstructured``. Classification never
raises, whatever the payload looks like.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

MEDIA_TYPES = ("image", "video", "document", "audio")
PROVIDER_MESSAGE_KEYS = {
    "imageMessage": "image",
    "videoMessage": "video",
    "documentMessage": "document",
    "audioMessage": "audio",
}


@dataclass(frozen=True)
class TaggedMedia:
    kind: str


@dataclass(frozen=True)
class FlaggedMedia:
    pass


@dataclass(frozen=True)
class MediaObject:
    media: Any


@dataclass(frozen=True)
class ProviderMessageMedia:
    kind: str


@dataclass(frozen=True)
class DirectMediaUrl:
    url: str


@dataclass(frozen=True)
class MediaLinks:
    link: str


@dataclass(frozen=True)
class Unstructured:
    pass


InboundShape = Union[
    TaggedMedia,
    FlaggedMedia,
    MediaObject,
    ProviderMessageMedia,
    DirectMediaUrl,
    MediaLinks,
    Unstructured,
]


@dataclass
class MediaReference:
    url: Optional[str]
    download_path: Optional[str]
    media_type: str  # photo, video
    mime: Optional[str] = None
    caption: Optional[str] = None
    file_name: Optional[str] = None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _present(value: Any) -> bool:
    """Set in the gateway's sense: anything but null, false, zero or an empty string. Empty objects count."""
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _media_link(media: dict) -> Optional[str]:
    file_info = _as_dict(media.get("file"))
    links = _as_dict(media.get("links"))
    return (
        _str_or_none(file_info.get("download"))
        or _str_or_none(links.get("download"))
        or _str_or_none(links.get("resource"))
    )


def classify_payload(payload: Any) -> InboundShape:
    data = _as_dict(payload)
    if not data:
        return Unstructured()

    kind = data.get("type")
    if isinstance(kind, str) and kind.lower() in MEDIA_TYPES:
        return TaggedMedia(kind.lower())

    if _present(data.get("hasMedia")):
        return FlaggedMedia()

    raw_media = data.get("media")
    link = _media_link(_as_dict(raw_media))
    if link:
        return MediaLinks(link)
    if _present(raw_media):
        return MediaObject(raw_media)

    message = _as_dict(data.get("message"))
    for key, message_kind in PROVIDER_MESSAGE_KEYS.items():
        if _present(message.get(key)):
            return ProviderMessageMedia(message_kind)

    url = _str_or_none(data.get("url")) or _str_or_none(data.get("fileUrl"))
    if url:
        return DirectMediaUrl(url)

    return Unstructured()


def has_media(payload: Any) -> bool:
    return not isinstance(classify_payload(payload), Unstructured)


def _media_type_for(kind: Optional[str], mime: Optional[str]) -> str:
    if (kind or "").lower() == "video" or (mime or "").lower().startswith("video/"):
        return "video"
    return "photo"


def extract_caption(payload: Any) -> Optional[str]:
    data = _as_dict(payload)
    message = _as_dict(data.get("message"))
    image_message = _as_dict(message.get("imageMessage"))
    media = _as_dict(data.get("media"))
    for candidate in (
        data.get("caption"),
        data.get("text"),
        message.get("caption"),
        image_message.get("caption"),
        media.get("caption"),
        data.get("body"),
    ):
        caption = _str_or_none(candidate)
        if caption:
            return caption
    return None


def extract_media_reference(payload: Any) -> Optional[MediaReference]:
    """Where to fetch the attachment from, or None when the payload carries no media."""
    shape = classify_payload(payload)
    if isinstance(shape, Unstructured):
        return None

    data = _as_dict(payload)
    message = _as_dict(data.get("message"))
    media = _as_dict(data.get("media"))
    image_message = _as_dict(message.get("imageMessage"))
    video_message = _as_dict(message.get("videoMessage"))

    url = (
        _str_or_none(data.get("url"))
        or _str_or_none(data.get("fileUrl"))
        or _str_or_none(image_message.get("url"))
        or _str_or_none(video_message.get("url"))
    )
    link = _media_link(media)
    download_path = None
    if link:
        if link.startswith("http://") or link.startswith("https://"):
            url = url or link
        else:
            download_path = link
    if not url and not download_path:
        return None

    mime = (
        _str_or_none(media.get("mime"))
        or _str_or_none(media.get("mimetype"))
        or _str_or_none(image_message.get("mimetype"))
        or _str_or_none(video_message.get("mimetype"))
    )
    kind = getattr(shape, "kind", None) or _str_or_none(media.get("type"))
    if not kind and video_message:
        kind = "video"
    return MediaReference(
        url=url,
        download_path=download_path,
        media_type=_media_type_for(kind, mime),
        mime=mime,
        caption=extract_caption(payload),
        file_name=_str_or_none(media.get("filename")) or _str_or_none(media.get("fileName")),
    )
