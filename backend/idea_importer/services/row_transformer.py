"""Map raw spreadsheet rows onto validated idea create commands.

Everything here is pure: a row goes in, an ``IdeaCreate`` or a
``RowValidationError`` comes out.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from functools import lru_cache
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from idea_importer.api.schemas.idea import IdeaCreate
from idea_importer.utils.coercion import (
    CoercionError,
    clean_text,
    to_bool,
    to_json_object,
    to_jsonable,
    to_score,
    to_string_list,
    to_url,
)

REQUIRED_FIELDS = ("title", "description")
MARKETS = ("B2B", "B2C", "B2B2C")
DEFAULT_TYPE = "web_app"
MAX_SLUG_LENGTH = 80
B2B_HINTS = ("business", "enterprise", "b2b")
MAX_GUESSED_TITLE_LENGTH = 200
URL_LIKE_RE = re.compile(
    r"^(https?://|www\.|[a-z0-9-]+\.(com|net|org|io|app|dev|co|ai|tech|xyz|me|ly)\b)",
    re.IGNORECASE,
)

# Target field -> accepted header names, most specific first.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "title": (
        "title", "name", "idea_name", "app_name", "solution_name",
        "format_name/description", "format_name",
    ),
    "description": (
        "description", "desc", "summary", "overview", "brief",
        "app_details", "details", "format_description",
    ),
    "content": ("content", "full_description", "long_description", "body"),
    "problem": ("problem", "pain_point", "issue", "challenge", "problem_statement"),
    "solution": ("solution", "approach", "answer", "solution_description"),
    "target_audience": (
        "target_audience", "audience", "target", "target_market", "users",
        "customer", "customers", "ideal_for_industries", "ideal_for_industry",
        "industries",
    ),
    "market": ("market", "market_type", "business_model"),
    "type": ("type", "app_type", "product_type", "category"),
    "preview_url": (
        "preview_url", "previewurl", "preview", "demo_url", "demo",
        "app_preview", "preview_link", "url", "link", "website", "app_url",
        "linked_for_app/site/presentation", "app/site/presentation", "linked",
    ),
    "image_url": (
        "image_url", "imageurl", "image", "logo_url", "logo", "thumbnail",
        "thumbnail_url",
    ),
    "keyword": ("keyword", "primary_keyword", "seo_keyword"),
    "opportunity_score": ("opportunity_score", "opportunity"),
    "problem_score": ("problem_score", "pain_score"),
    "feasibility_score": ("feasibility_score", "feasibility"),
    "timing_score": ("timing_score", "timing"),
    "revenue_potential": ("revenue_potential", "revenue"),
    "is_published": ("is_published", "published"),
    "is_featured": ("is_featured", "featured"),
    "signal_badges": ("signal_badges", "badges", "tags"),
    "framework_data": ("framework_data", "frameworks"),
}

COERCERS: dict[str, Callable[[Any], Any]] = {
    "preview_url": to_url,
    "image_url": to_url,
    "opportunity_score": to_score,
    "problem_score": to_score,
    "feasibility_score": to_score,
    "timing_score": to_score,
    "is_published": to_bool,
    "is_featured": to_bool,
    "signal_badges": to_string_list,
    "framework_data": to_json_object,
}


class RowValidationError(ValueError):
    """A single row could not be turned into a create command."""

    def __init__(self, row: int, message: str) -> None:
        super().__init__(message)
        self.row = row
        self.message = message


def normalize_header(header: str) -> str:
    return re.sub(r"[\s\-]+", "_", str(header).strip().lower())


@lru_cache(maxsize=128)
def resolve_headers(headers: tuple[str, ...]) -> dict[str, str]:
    """Return target field -> spreadsheet header for the headers present."""
    by_normalized: dict[str, str] = {}
    for header in headers:
        by_normalized.setdefault(normalize_header(header), header)

    mapping: dict[str, str] = {}
    claimed: set[str] = set()
    for target, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            header = by_normalized.get(alias)
            if header is not None and header not in claimed:
                mapping[target] = header
                claimed.add(header)
                break
    return mapping


def guess_columns(values: Mapping[str, Any], mapping: dict[str, str]) -> dict[str, str]:
    """Fill in URL, title and description columns that no header named.

    Only text cells in columns left unclaimed by ``resolve_headers`` are
    considered, in sheet order: the first URL-looking cell becomes the
    preview URL, the first short remaining cell the title and the next one
    the description.
    """
    def present(target: str) -> bool:
        header = mapping.get(target)
        return header is not None and clean_text(values.get(header)) is not None

    claimed = set(mapping.values())
    free = [
        header
        for header, cell in values.items()
        if header not in claimed and isinstance(cell, str) and cell.strip()
    ]
    resolved = dict(mapping)

    if not present("preview_url"):
        for header in free:
            text = values[header].strip()
            if not URL_LIKE_RE.match(text):
                continue
            try:
                to_url(text)
            except CoercionError:
                continue
            resolved["preview_url"] = header
            free.remove(header)
            break

    if not present("title"):
        for header in free:
            if len(values[header].strip()) < MAX_GUESSED_TITLE_LENGTH:
                resolved["title"] = header
                free.remove(header)
                break

    if not present("description") and free:
        resolved["description"] = free[0]

    return resolved


def make_slug(title: str, fallback_seed: str = "") -> str:
    """Derive a URL slug from the title; deterministic for the same input."""
    ascii_title = (
        unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9\s-]", "", ascii_title.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    if not slug:
        digest = hashlib.sha1(f"{title}\n{fallback_seed}".encode("utf-8")).hexdigest()
        slug = f"idea-{digest[:10]}"
    return slug


def infer_market(target_audience: str | None) -> str:
    lowered = (target_audience or "").lower()
    return "B2B" if any(hint in lowered for hint in B2B_HINTS) else "B2C"


def _coerce_market(value: str) -> str:
    market = value.strip().upper().replace(" ", "")
    if market not in MARKETS:
        raise CoercionError(f"'{value}' is not one of {', '.join(MARKETS)}")
    return market


def _missing_message(missing: list[str]) -> str:
    if len(missing) == 1:
        return f"missing required field: {missing[0]}"
    return f"missing required fields: {', '.join(missing)}"


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "row"
    return f"invalid value for {field}: {first.get('msg', 'invalid')}"


def transform_row(values: Mapping[str, Any], row_number: int) -> IdeaCreate:
    """Build an ``IdeaCreate`` from one raw row.

    Args:
        values: spreadsheet header -> raw cell value.
        row_number: 1-based row number used in error messages.

    Raises:
        RowValidationError: coercion failure, or a required field that
            neither a header alias nor ``guess_columns`` could find.
    """
    mapping = guess_columns(values, resolve_headers(tuple(values.keys())))

    def raw(target: str) -> Any:
        header = mapping.get(target)
        return values.get(header) if header is not None else None

    missing = [target for target in REQUIRED_FIELDS if clean_text(raw(target)) is None]
    if missing:
        raise RowValidationError(row_number, _missing_message(missing))

    data: dict[str, Any] = {}
    for target in FIELD_ALIASES:
        coercer = COERCERS.get(target, clean_text)
        try:
            value = coercer(raw(target))
        except CoercionError as e:
            raise RowValidationError(
                row_number, f"invalid value for {target}: {e}"
            ) from e
        if value is not None:
            data[target] = value

    if "market" in data:
        try:
            data["market"] = _coerce_market(data["market"])
        except CoercionError as e:
            raise RowValidationError(row_number, f"invalid value for market: {e}") from e
    else:
        data["market"] = infer_market(data.get("target_audience"))

    data.setdefault("type", DEFAULT_TYPE)
    data.setdefault("content", data["description"])
    data["slug"] = make_slug(data["title"], data["description"])

    mapped_headers = set(mapping.values())
    data["extra_fields"] = {
        header: to_jsonable(cell)
        for header, cell in values.items()
        if header not in mapped_headers and clean_text(cell) is not None
    }

    try:
        return IdeaCreate(**data)
    except ValidationError as e:
        raise RowValidationError(row_number, _describe_validation_error(e)) from e
