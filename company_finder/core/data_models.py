"""Data models used throughout Company Finder.

The Company class mirrors one row of the remote ``companies`` table.  Every
field except the identifier is optional, and records are never modified by
this application.  SearchFilters captures the (query, industry, state,
status) tuple that constrains a search, including the ``all`` sentinel.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

ALL = "all"
PAGE_SIZE = 12

INDUSTRIES: Tuple[str, ...] = (
    "Retail",
    "Services",
    "Technology",
    "Construction",
    "Food & Beverage",
)
STATES: Tuple[str, ...] = ("NSW", "VIC", "QLD", "WA", "SA", "TAS", "ACT", "NT")
STATUSES: Tuple[str, ...] = ("Registered", "Deregistered")

# Maps filter fields to the HTTP query parameter that carries them
FILTER_PARAMS: Dict[str, str] = {
    "query": "q",
    "industry": "industry",
    "state": "state",
    "status": "status",
}


def is_unconstrained(value: Optional[str]) -> bool:
    """True when a filter value places no constraint on its field."""
    if value is None:
        return True
    value = str(value).strip()
    return not value or value.lower() == ALL


@dataclass(frozen=True)
class Company:
    """A single registry record.

    Attributes
    ----------
    id : str
        Opaque, unique and stable identifier.
    register_name : Optional[str]
        Registered (legal) name.
    business_name : Optional[str]
        Trading name.
    abn : Optional[str]
        Tax identifier.
    acn : Optional[str]
        Secondary registration identifier.
    status : Optional[str]
        Lifecycle status, e.g. ``Registered`` or ``Deregistered``.
    """

    id: str
    name: Optional[str] = None
    register_name: Optional[str] = None
    business_name: Optional[str] = None
    abn: Optional[str] = None
    acn: Optional[str] = None
    status: Optional[str] = None
    state: Optional[str] = None
    state_number: Optional[str] = None
    registration_date: Optional[str] = None
    cancellation_date: Optional[str] = None
    industry: Optional[str] = None
    registration_number: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    def __post_init__(self) -> None:
        if self.id is None or not str(self.id).strip():
            raise ValueError("Company id cannot be empty")
        object.__setattr__(self, "id", str(self.id).strip())

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Company":
        """Create a Company from a row, ignoring columns we don't model.

        Raises
        ------
        ValueError
            If the identifier is missing or blank.
        """
        if "id" not in data:
            raise ValueError("Company requires an 'id' field")

        known = set(cls.field_names())
        values = {}
        for key, value in data.items():
            if key not in known:
                continue
            if value is not None and key != "id":
                value = str(value)
            values[key] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the record to a JSON-serialisable dictionary."""
        return asdict(self)

    @property
    def display_name(self) -> str:
        return self.register_name or self.business_name or self.name or self.id

    def status_matches(self, status: str) -> bool:
        """Compare lifecycle status case-insensitively."""
        if self.status is None:
            return False
        return self.status.strip().lower() == status.strip().lower()

    @property
    def is_registered(self) -> bool:
        return self.status_matches("Registered")

    def __repr__(self) -> str:
        return f"Company(id={self.id!r}, register_name={self.register_name!r})"


@dataclass(frozen=True)
class SearchFilters:
    """Filter tuple constraining a search.

    ``industry``, ``state`` and ``status`` use the sentinel ``all`` to mean
    "do not constrain this field"; an empty ``query`` matches every name.
    """

    query: str = ""
    industry: str = ALL
    state: str = ALL
    status: str = ALL

    def __post_init__(self) -> None:
        object.__setattr__(self, "query", (self.query or "").strip())
        for name in ("industry", "state", "status"):
            value = getattr(self, name)
            normalised = ALL if is_unconstrained(value) else str(value).strip()
            object.__setattr__(self, name, normalised)

    def constraints(self) -> Dict[str, str]:
        """Return only the constrained fields, keyed by field name.

        The ``all`` sentinel applies to the enumerated fields only; query
        text is unconstrained just when blank, so ``"all"`` is searched for.
        """
        constrained = {"query": self.query} if self.query else {}
        for name in ("industry", "state", "status"):
            value = getattr(self, name)
            if not is_unconstrained(value):
                constrained[name] = value
        return constrained

    def to_params(self) -> Dict[str, str]:
        """Render the HTTP query parameters, omitting unconstrained fields."""
        return {FILTER_PARAMS[name]: value for name, value in self.constraints().items()}

    def cache_key(self, page: Optional[int] = None, limit: Optional[int] = None) -> str:
        """Canonical serialisation of filter and pagination.

        Field order and the spelling of "unconstrained" do not affect the key.
        """
        items = [
            ("q", self.query),
            ("industry", self.industry),
            ("state", self.state),
            ("status", self.status),
        ]
        if page is not None:
            items.append(("page", str(page)))
        if limit is not None:
            items.append(("limit", str(limit)))
        return urlencode(sorted(items))

    def with_changes(self, **changes: str) -> "SearchFilters":
        return replace(self, **changes)

    @property
    def is_empty(self) -> bool:
        return not self.constraints()

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchFilters":
        data = data or {}
        return cls(
            query=data.get("query") or "",
            industry=data.get("industry") or ALL,
            state=data.get("state") or ALL,
            status=data.get("status") or ALL,
        )


@dataclass
class SearchResponse:
    """One page of search results."""

    companies: List[Company] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape used by the HTTP API."""
        return {
            "companies": [c.to_dict() for c in self.companies],
            "total": self.total,
            "hasMore": self.has_more,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchResponse":
        data = data or {}
        companies = []
        for row in data.get("companies") or []:
            try:
                companies.append(Company.from_dict(row))
            except ValueError as e:
                logger.warning("Skipping malformed company row: %s", e)
        return cls(
            companies=companies,
            total=int(data.get("total") or 0),
            has_more=bool(data.get("hasMore") or False),
        )

    @classmethod
    def for_page(cls, companies: List[Company], total: int, limit: int) -> "SearchResponse":
        """Build a page; ``has_more`` is true when the page came back full."""
        return cls(companies=companies, total=total, has_more=len(companies) == limit)

    def __len__(self) -> int:
        return len(self.companies)
