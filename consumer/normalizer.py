"""Normalization of raw feed items into job candidates."""
import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlparse
from bs4 import BeautifulSoup
from consumer.feed_parser import RawFeedItem
from shared.config import settings
from shared.exceptions import ValidationError
from shared.utils import extract_source_name, get_utc_now

logger = logging.getLogger(__name__)

UNTITLED_POSITION = "Untitled Position"
UNKNOWN_COMPANY = "Unknown Company"
DEFAULT_JOB_TYPE = "full-time"
DEFAULT_CATEGORY = "general"
TRUNCATION_MARKER = "..."

# Query parameter job boards use to scope a feed to one category
CATEGORY_QUERY_PARAM = "job_categories"

# Query parameters that carry a posting id, in order of preference
ID_QUERY_PARAMS = ("id", "job_id", "jobid", "jobId")

JOB_TYPE_ALIASES = {
    "full time": "full-time",
    "fulltime": "full-time",
    "full-time": "full-time",
    "permanent": "full-time",
    "part time": "part-time",
    "parttime": "part-time",
    "part-time": "part-time",
    "contract": "contract",
    "contractor": "contract",
    "contract to hire": "contract",
    "freelance": "freelance",
    "freelancer": "freelance",
    "internship": "internship",
    "intern": "internship",
    "temporary": "temporary",
    "temp": "temporary",
}

_NUMERIC_ENTITY = re.compile(r"&#(x[0-9A-Fa-f]+|[0-9]+);")
_RESIDUAL_MARKUP = re.compile(r"<[A-Za-z/!][^<>]*>|&[A-Za-z0-9#]+;")
_WHITESPACE = re.compile(r"\s+")
_NUMERIC_SEGMENT = re.compile(r"/(\d+)(?:\.[A-Za-z]+)?/?$")


@dataclass
class JobCandidate:
    """A normalized feed item that has not been persisted yet."""
    external_id: str
    title: str
    company: str
    source: str
    source_url: str
    location: str = ""
    description: str = ""
    job_type: str = DEFAULT_JOB_TYPE
    category: str = DEFAULT_CATEGORY
    salary: str = ""
    url: str = ""
    published_date: Optional[datetime] = None

    def validate(self) -> List[str]:
        """Return the reasons this candidate cannot be imported."""
        errors = []
        for name in ("external_id", "title", "company", "source"):
            if not (getattr(self, name) or "").strip():
                errors.append(f"Missing {name}")

        title = (self.title or "").strip()
        company = (self.company or "").strip()
        if title and len(title) < 3:
            errors.append("Title too short (min 3 characters)")
        if len(title) > 200:
            errors.append("Title too long (max 200 characters)")
        if company and len(company) < 2:
            errors.append("Company name too short (min 2 characters)")
        if len(company) > 100:
            errors.append("Company name too long (max 100 characters)")
        return errors

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DroppedItem:
    """A feed item excluded before reconciliation."""
    index: int
    external_id: str
    error: ValidationError


@dataclass
class NormalizationResult:
    candidates: List[JobCandidate] = field(default_factory=list)
    dropped: List[DroppedItem] = field(default_factory=list)


def clean_text(value: Optional[str]) -> str:
    """Strip markup and entity noise from a feed value."""
    if not value:
        return ""
    text = value.replace("<![CDATA[", "").replace("]]>", "")
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    text = _NUMERIC_ENTITY.sub(_decode_numeric_entity, text)
    text = _RESIDUAL_MARKUP.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _decode_numeric_entity(match: re.Match) -> str:
    ref = match.group(1)
    try:
        codepoint = int(ref[1:], 16) if ref[0] in "xX" else int(ref)
        return chr(codepoint)
    except (ValueError, OverflowError):
        return " "


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER


def canonical_job_type(value: Optional[str]) -> str:
    """Map free-form job type labels onto a small set of tokens."""
    text = _WHITESPACE.sub(" ", clean_text(value).lower().replace("_", " ")).strip()
    if not text:
        return DEFAULT_JOB_TYPE
    return JOB_TYPE_ALIASES.get(text, text.replace(" ", "-"))


def external_id_from_url(url: Optional[str]) -> Optional[str]:
    """Take a posting id from a numeric last path segment or an id query parameter."""
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None

    match = _NUMERIC_SEGMENT.search(parsed.path)
    if match:
        return match.group(1)

    query = parse_qs(parsed.query)
    for key in ID_QUERY_PARAMS:
        values = [value for value in query.get(key, []) if value.strip()]
        if values:
            return values[-1].strip()

    # A lone numeric parameter is taken as the id
    if len(query) == 1:
        value = list(query.values())[0][-1]
        if value.isdigit():
            return value
    return None


def category_from_source(source_url: str) -> Optional[str]:
    try:
        values = parse_qs(urlparse(source_url).query).get(CATEGORY_QUERY_PARAM)
    except ValueError:
        return None
    return values[0].strip() if values and values[0].strip() else None


def parse_published_date(value: Optional[str]) -> Optional[datetime]:
    """Parse RFC 2822 (RSS) or ISO 8601 (Atom) timestamps to aware UTC."""
    if not value:
        return None
    value = value.strip()
    parsed = None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _first(*values: Optional[str]) -> str:
    for value in values:
        text = clean_text(value)
        if text:
            return text
    return ""


class JobNormalizer:
    """Maps RawFeedItem records onto JobCandidate records."""

    def __init__(self, description_limit: Optional[int] = None):
        self.description_limit = description_limit or settings.description_max_length

    def normalize(
        self,
        item: RawFeedItem,
        source_url: str,
        index: int,
        now: Optional[datetime] = None
    ) -> JobCandidate:
        """Build the candidate for the ``index``-th item of a feed."""
        now = now or get_utc_now()
        source = extract_source_name(source_url)
        link = (item.link or item.url or "").strip()

        external_id = (
            _first(item.guid, item.id)
            or external_id_from_url(link)
            or f"{source}-{int(now.timestamp() * 1000)}-{index}"
        )

        return JobCandidate(
            external_id=external_id,
            title=_first(item.title) or UNTITLED_POSITION,
            company=_first(item.job_company, item.company, item.dc_creator, item.author) or UNKNOWN_COMPANY,
            source=source,
            source_url=source_url,
            location=_first(item.job_location, item.location),
            description=truncate(_first(item.description, item.summary, item.content), self.description_limit),
            job_type=canonical_job_type(item.job_type or item.type),
            category=category_from_source(source_url) or _first(item.job_category, item.category) or DEFAULT_CATEGORY,
            salary=_first(item.job_salary, item.salary),
            url=link or source_url,
            published_date=parse_published_date(item.pub_date or item.published or item.updated) or now,
        )

    def normalize_items(self, items: Sequence[RawFeedItem], source_url: str) -> NormalizationResult:
        """Normalize a whole feed, separating valid candidates from dropped items."""
        now = get_utc_now()
        result = NormalizationResult()

        for index, item in enumerate(items):
            candidate = self.normalize(item, source_url, index, now=now)
            errors = candidate.validate()
            if errors:
                dropped = DroppedItem(index=index, external_id=candidate.external_id, error=ValidationError(errors))
                result.dropped.append(dropped)
                logger.warning(f"Dropping item {index + 1} from {source_url}: {dropped.error}")
                continue
            result.candidates.append(candidate)

        logger.info(
            f"Normalized {len(items)} items from {source_url}: "
            f"{len(result.candidates)} valid, {len(result.dropped)} dropped"
        )
        return result
