"""Tolerant RSS/Atom parser for job feeds.

Feeds come from sources we do not control and are frequently not
well-formed XML. Parsing happens in two tiers:

1. The document is parsed as-is. Namespace prefixes are restored from the
   document's own ``xmlns`` declarations so that vendor fields such as
   ``job:company`` keep their names.
2. If that raises, the text is repaired (bare ampersands escaped, control
   characters stripped, stray ``<`` neutralized, attributes dropped, tags
   balanced, prefixes declared) and parsed again.

If both tiers fail the feed yields no items; the caller records that as an
informational outcome rather than an error.
"""
import html.entities
import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, fields
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union
from shared.exceptions import ParseError

logger = logging.getLogger(__name__)


@dataclass
class RawFeedItem:
    """One feed entry, with a slot for every source key we understand."""
    title: Optional[str] = None
    guid: Optional[str] = None
    id: Optional[str] = None
    link: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    job_company: Optional[str] = None
    company: Optional[str] = None
    dc_creator: Optional[str] = None
    author: Optional[str] = None
    job_location: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    type: Optional[str] = None
    job_category: Optional[str] = None
    category: Optional[str] = None
    job_salary: Optional[str] = None
    salary: Optional[str] = None
    pub_date: Optional[str] = None
    published: Optional[str] = None
    updated: Optional[str] = None

    @classmethod
    def from_fields(cls, values: Dict[str, str]) -> "RawFeedItem":
        """Build an item from a ``{qualified element name: text}`` mapping."""
        item = cls()
        for qualified, value in values.items():
            name = field_for_element(qualified)
            if name and getattr(item, name) is None and value:
                setattr(item, name, value)
        return item

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


# Prefixes job boards use for their own item extensions (job:company, ...)
VENDOR_PREFIXES = {"job", "jobs", "job_listing", "joblisting"}

_VENDOR_FIELDS = {
    "company": "job_company",
    "location": "job_location",
    "type": "job_type",
    "job_type": "job_type",
    "jobtype": "job_type",
    "category": "job_category",
    "job_category": "job_category",
    "salary": "job_salary",
}

_PLAIN_FIELDS = {
    "title": "title",
    "guid": "guid",
    "id": "id",
    "link": "link",
    "url": "url",
    "description": "description",
    "summary": "summary",
    "content": "content",
    "company": "company",
    "author": "author",
    "location": "location",
    "type": "type",
    "category": "category",
    "salary": "salary",
    "pubdate": "pub_date",
    "published": "published",
    "updated": "updated",
}


def field_for_element(qualified: str) -> Optional[str]:
    """Map a ``prefix:local`` element name to a RawFeedItem field."""
    prefix, _, local = qualified.lower().rpartition(":")
    if prefix in VENDOR_PREFIXES:
        return _VENDOR_FIELDS.get(local)
    if prefix == "dc" and local == "creator":
        return "dc_creator"
    if prefix == "content" and local == "encoded":
        return "content"
    if prefix:
        return None
    return _PLAIN_FIELDS.get(local)


# --- Tier 1 ---------------------------------------------------------------

def _read_tree(data: bytes) -> Tuple[ET.Element, Dict[str, str]]:
    """Parse ``data`` and return the root plus a namespace-uri -> prefix map."""
    prefixes: Dict[str, str] = {}
    root = None
    for event, payload in ET.iterparse(io.BytesIO(data), events=("start-ns", "start")):
        if event == "start-ns":
            prefix, uri = payload
            prefixes.setdefault(uri, prefix)
        elif root is None:
            root = payload
    if root is None:
        raise ParseError("Document has no root element")
    return root, prefixes


def _qualifier(prefixes: Dict[str, str]) -> Callable[[ET.Element], str]:
    def qualified_name(element: ET.Element) -> str:
        tag = element.tag
        if not isinstance(tag, str):
            return ""
        if tag.startswith("{"):
            uri, _, local = tag[1:].partition("}")
            prefix = prefixes.get(uri, "")
            return f"{prefix}:{local}" if prefix else local
        return tag
    return qualified_name


def _local_name(element: ET.Element) -> str:
    tag = element.tag if isinstance(element.tag, str) else ""
    return tag.rpartition("}")[2].lower()


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local_name(child) == name]


def find_item_elements(root: ET.Element) -> List[ET.Element]:
    """Return the entries of the first recognized container in the tree."""
    root_name = _local_name(root)

    if root_name == "feed":
        return _children(root, "entry")

    for element in root.iter():
        name = _local_name(element)
        if name == "channel":
            items = _children(element, "item")
            if items:
                return items
        elif name == "feed":
            entries = _children(element, "entry")
            if entries:
                return entries

    # RSS 1.0 keeps items beside the channel, directly under rdf:RDF
    return _children(root, "item")


def _element_text(element: ET.Element) -> str:
    if len(element):
        text = " ".join(part.strip() for part in element.itertext() if part.strip())
    else:
        text = (element.text or "").strip()

    if not text:
        if _local_name(element) == "link":
            text = (element.get("href") or "").strip()
        elif _local_name(element) == "category":
            text = (element.get("term") or "").strip()
    return text


def _item_values(item: ET.Element, qualified_name: Callable[[ET.Element], str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for child in item:
        key = qualified_name(child).lower()
        if not key:
            continue
        if key == "link" and child.get("rel") not in (None, "alternate"):
            continue
        if key in values and values[key]:
            continue
        values[key] = _element_text(child)
    return values


def _extract_items(data: bytes) -> List[RawFeedItem]:
    root, prefixes = _read_tree(data)
    qualified_name = _qualifier(prefixes)

    items = []
    for element in find_item_elements(root):
        item = RawFeedItem.from_fields(_item_values(element, qualified_name))
        if not item.is_empty():
            items.append(item)
    return items


# --- Tier 2 ---------------------------------------------------------------

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_XML_DECLARATION = re.compile(r"<\?xml[^>]*\?>", re.IGNORECASE)
_DOCTYPE = re.compile(r"<!DOCTYPE[^>\[]*(\[.*?\])?\s*>", re.IGNORECASE | re.DOTALL)
_PROTECTED = re.compile(r"(<!\[CDATA\[.*?\]\]>|<!--.*?-->)", re.DOTALL)
_ENTITY = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
_CHAR_REF = re.compile(r"&#(x[0-9A-Fa-f]+|[0-9]+);")
_BARE_AMPERSAND = re.compile(r"&(?!(?:[A-Za-z][A-Za-z0-9]*|#[0-9]+|#x[0-9A-Fa-f]+);)")
_PROCESSING = re.compile(r"<\?.*?\?>|<![A-Za-z][^<>]*>", re.DOTALL)
_STRAY_LT = re.compile(r"<(?!/?[A-Za-z_])")
_UNTERMINATED_TAG = re.compile(r"<(/?[A-Za-z_][^<>]*)(?=<|$)")
_VALUE_IN_ATTRIBUTE = re.compile(r"<(link|category)(\s[^<>]*?)?\s*(?:/>|>\s*</\1\s*>)", re.IGNORECASE)
_ATTRIBUTE = re.compile(r"""([A-Za-z_][\w.:-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_TAG_WITH_ATTRIBUTES = re.compile(r"<(/?)([A-Za-z_][\w.:-]*)(?:\s[^<>]*?)?\s*(/?)>")
_TAG = re.compile(r"<(/?)([A-Za-z_][\w.:-]*)(/?)>")
_PREFIX = re.compile(r"<([A-Za-z_][\w.-]*):[A-Za-z_]")

_XML_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}


def _valid_xml_char(codepoint: int) -> bool:
    return (
        codepoint in (0x9, 0xA, 0xD)
        or 0x20 <= codepoint <= 0xD7FF
        or 0xE000 <= codepoint <= 0xFFFD
        or 0x10000 <= codepoint <= 0x10FFFF
    )


def _replace_entity(match: re.Match) -> str:
    name = match.group(1)
    if name in _XML_ENTITIES:
        return match.group(0)
    codepoint = html.entities.name2codepoint.get(name)
    if codepoint is None:
        return f"&amp;{name};"
    return f"&#{codepoint};"


def _replace_char_ref(match: re.Match) -> str:
    ref = match.group(1)
    try:
        codepoint = int(ref[1:], 16) if ref[0] in "xX" else int(ref)
    except ValueError:
        return " "
    return match.group(0) if _valid_xml_char(codepoint) else " "


def _repair_markup(text: str) -> str:
    """Repair one stretch of markup that lies outside CDATA and comments."""
    text = _ENTITY.sub(_replace_entity, text)
    text = _CHAR_REF.sub(_replace_char_ref, text)
    text = _BARE_AMPERSAND.sub("&amp;", text)
    text = text.replace("<![CDATA[", "&lt;![CDATA[").replace("]]>", "]]&gt;")
    text = _PROCESSING.sub("", text)
    text = _STRAY_LT.sub("&lt;", text)
    text = _UNTERMINATED_TAG.sub(r"&lt;\1", text)
    text = _VALUE_IN_ATTRIBUTE.sub(_attribute_value_to_text, text)
    return _TAG_WITH_ATTRIBUTES.sub(r"<\1\2\3>", text)


def _attribute_value_to_text(match: re.Match) -> str:
    """Move an empty Atom link's href or category's term into element text."""
    name = match.group(1)
    attributes = {
        key.lower(): double or single
        for key, double, single in _ATTRIBUTE.findall(match.group(2) or "")
    }

    if name.lower() == "link":
        if attributes.get("rel", "alternate") != "alternate":
            return ""
        value = attributes.get("href", "").strip()
    else:
        value = attributes.get("term", "").strip()

    if not value:
        return match.group(0)
    return f"<{name}>{value}</{name}>"


def _tokens(segments: List[Tuple[bool, str]]) -> Iterator[Tuple[str, str, str]]:
    """Yield (kind, name, raw) tokens; kind is text, open, close or empty."""
    for protected, segment in segments:
        if protected:
            yield "text", "", segment
            continue
        position = 0
        for match in _TAG.finditer(segment):
            if match.start() > position:
                yield "text", "", segment[position:match.start()]
            closing, name, self_closing = match.groups()
            if closing:
                yield "close", name, match.group(0)
            elif self_closing:
                yield "empty", name, match.group(0)
            else:
                yield "open", name, match.group(0)
            position = match.end()
        if position < len(segment):
            yield "text", "", segment[position:]


def _balance(tokens: Iterator[Tuple[str, str, str]]) -> str:
    """Close or collapse unmatched tags and drop content outside the root."""
    out: List[str] = []
    stack: List[Tuple[str, int]] = []
    started = False

    for kind, name, raw in tokens:
        if kind == "text":
            if stack:
                out.append(raw)
            continue

        if started and not stack:
            # Anything after the root element closes is junk
            break

        if kind == "open":
            stack.append((name, len(out)))
            out.append(f"<{name}>")
            started = True
        elif kind == "empty":
            if stack:
                out.append(f"<{name}/>")
        else:
            position = _match_open_tag(stack, name)
            if position is None:
                continue
            while len(stack) - 1 > position:
                unclosed, index = stack.pop()
                out[index] = f"<{unclosed}/>"
            opened, _ = stack.pop()
            out.append(f"</{opened}>")

    for name, _ in reversed(stack):
        out.append(f"</{name}>")
    return "".join(out)


def _match_open_tag(stack: List[Tuple[str, int]], name: str) -> Optional[int]:
    for position in range(len(stack) - 1, -1, -1):
        if stack[position][0] == name:
            return position
    lowered = name.lower()
    for position in range(len(stack) - 1, -1, -1):
        if stack[position][0].lower() == lowered:
            return position
    return None


def _declare_prefixes(document: str) -> str:
    prefixes = sorted({p for p in _PREFIX.findall(document) if p.lower() not in ("xml", "xmlns")})
    if not prefixes:
        return document
    declarations = "".join(f' xmlns:{p}="urn:feed-prefix:{p}"' for p in prefixes)
    return re.sub(r"^<([A-Za-z_][\w.:-]*)>", lambda m: f"<{m.group(1)}{declarations}>", document, count=1)


def repair_document(data: Union[bytes, str]) -> str:
    """Rewrite a malformed feed into well-formed, attribute-free XML."""
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    text = text.lstrip("\ufeff")
    text = _CONTROL_CHARS.sub("", text)
    text = _XML_DECLARATION.sub("", text)
    text = _DOCTYPE.sub("", text)

    segments: List[Tuple[bool, str]] = []
    for index, part in enumerate(_PROTECTED.split(text)):
        if not part:
            continue
        if index % 2:
            # Comments carry nothing we extract
            if part.startswith("<![CDATA["):
                segments.append((True, part))
        else:
            segments.append((False, _repair_markup(part)))

    return _declare_prefixes(_balance(_tokens(segments)))


# --- Entry point ----------------------------------------------------------

class FeedParser:
    """Turns raw feed bytes into RawFeedItem records."""

    def parse(self, data: Union[bytes, str]) -> List[RawFeedItem]:
        """Parse a feed, returning an empty list when nothing can be recovered."""
        payload = data.encode("utf-8") if isinstance(data, str) else data

        try:
            return _extract_items(payload)
        except (ET.ParseError, ParseError, ValueError, LookupError) as e:
            logger.warning(f"Feed is not well-formed ({e}); attempting repair")

        try:
            repaired = repair_document(data)
            if not repaired.strip():
                raise ParseError("Nothing left to parse after repair")
            items = _extract_items(repaired.encode("utf-8"))
        except (ET.ParseError, ParseError) as e:
            logger.error(f"Feed could not be parsed after repair: {e}")
            return []

        logger.info(f"Recovered {len(items)} items from repaired feed")
        return items
