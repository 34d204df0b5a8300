"""
Structured routing-rule conditions.

A rule's JSONB ``conditions`` blob is parsed into a list of tagged clauses;
each clause knows which lead attribute it constrains. An empty clause list
matches every lead.
"""

from abc import abstractmethod
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# Fixed partition of the 50 US states into macro-regions
STATE_REGION_MAP: Dict[str, str] = {
    # Northeast
    "CT": "Northeast", "ME": "Northeast", "MA": "Northeast", "NH": "Northeast",
    "RI": "Northeast", "VT": "Northeast", "NY": "Northeast", "NJ": "Northeast",
    "PA": "Northeast",

    # Southeast
    "DE": "Southeast", "FL": "Southeast", "GA": "Southeast", "MD": "Southeast",
    "NC": "Southeast", "SC": "Southeast", "VA": "Southeast", "WV": "Southeast",
    "KY": "Southeast", "TN": "Southeast", "AL": "Southeast", "MS": "Southeast",
    "AR": "Southeast", "LA": "Southeast",

    # Midwest
    "IL": "Midwest", "IN": "Midwest", "MI": "Midwest", "OH": "Midwest",
    "WI": "Midwest", "IA": "Midwest", "KS": "Midwest", "MN": "Midwest",
    "MO": "Midwest", "NE": "Midwest", "ND": "Midwest", "SD": "Midwest",

    # Southwest
    "AZ": "Southwest", "NM": "Southwest", "OK": "Southwest", "TX": "Southwest",

    # West
    "CO": "West", "ID": "West", "MT": "West", "NV": "West",
    "UT": "West", "WY": "West", "AK": "West", "CA": "West",
    "HI": "West", "OR": "West", "WA": "West",
}


def region_for_state(state: Optional[str]) -> Optional[str]:
    """Macro-region for a US state code, or None if unknown."""
    if not state:
        return None
    return STATE_REGION_MAP.get(state.upper())


def lead_country(lead: Any) -> str:
    location = getattr(lead, "company_location", None) or {}
    return location.get("country") or "US"


def lead_state(lead: Any) -> Optional[str]:
    """Upper-cased US state code from company_location, or None."""
    location = getattr(lead, "company_location", None) or {}
    state = location.get("state")
    return str(state).strip().upper() if state else None


class _MembershipClause(BaseModel):
    """Lead attribute must be one of ``values``; empty values means don't care."""
    values: List[str] = Field(default_factory=list)

    @abstractmethod
    def lead_value(self, lead: Any) -> Optional[str]:
        ...

    def matches(self, lead: Any) -> bool:
        if not self.values:
            return True
        value = self.lead_value(lead)
        return value is not None and value in self.values


class IndustryClause(_MembershipClause):
    kind: Literal["industries"] = "industries"

    def lead_value(self, lead: Any) -> Optional[str]:
        return getattr(lead, "company_industry", None)


class CompanySizeClause(_MembershipClause):
    kind: Literal["company_sizes"] = "company_sizes"

    def lead_value(self, lead: Any) -> Optional[str]:
        return getattr(lead, "company_size", None)


class RevenueRangeClause(_MembershipClause):
    kind: Literal["revenue_ranges"] = "revenue_ranges"

    def lead_value(self, lead: Any) -> Optional[str]:
        return getattr(lead, "company_revenue", None)


class CountryClause(_MembershipClause):
    kind: Literal["countries"] = "countries"

    def lead_value(self, lead: Any) -> Optional[str]:
        return lead_country(lead)


class StateClause(_MembershipClause):
    kind: Literal["us_states"] = "us_states"

    @field_validator("values")
    @classmethod
    def normalise_codes(cls, values: List[str]) -> List[str]:
        return [v.strip().upper() for v in values]

    def lead_value(self, lead: Any) -> Optional[str]:
        return lead_state(lead)


class RegionClause(_MembershipClause):
    """Region derived from the lead's US state; no state or unmapped state fails."""
    kind: Literal["regions"] = "regions"

    def lead_value(self, lead: Any) -> Optional[str]:
        return region_for_state(lead_state(lead))


ConditionClause = Annotated[
    Union[
        IndustryClause,
        CompanySizeClause,
        RevenueRangeClause,
        CountryClause,
        StateClause,
        RegionClause,
    ],
    Field(discriminator="kind"),
]


class RuleConditions(BaseModel):
    """AND-combination of condition clauses."""
    clauses: List[ConditionClause] = Field(default_factory=list)

    BLOB_KEYS: ClassVar[tuple] = (
        "industries",
        "company_sizes",
        "revenue_ranges",
        "countries",
        "us_states",
        "regions",
    )

    @classmethod
    def from_blob(cls, blob: Optional[Dict[str, Any]]) -> "RuleConditions":
        """
        Parse the stored JSONB conditions.

        Unknown keys are ignored; missing or empty lists produce no clause.
        """
        clauses = []
        for key in cls.BLOB_KEYS:
            values = (blob or {}).get(key) or []
            if isinstance(values, str):
                values = [values]
            if values:
                clauses.append({"kind": key, "values": [str(v) for v in values]})
        return cls.model_validate({"clauses": clauses})

    def to_blob(self) -> Dict[str, List[str]]:
        return {clause.kind: list(clause.values) for clause in self.clauses}

    def matches(self, lead: Any) -> bool:
        return all(clause.matches(lead) for clause in self.clauses)
