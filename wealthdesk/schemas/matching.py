"""Pydantic schemas for catalog products and product-match results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CatalogProduct(BaseModel):
    """A canonical insurance product from the catalog."""

    model_config = ConfigDict(extra="ignore")

    insurance_id: str
    insurance_name: str
    provider: str
    product_category: str | None = None
    currency: str | None = None


class FuzzyMatch(BaseModel):
    """One fuzzy candidate for an extracted product identity."""

    insurance_id: str
    insurance_name: str
    provider: str
    similarity_score: float = Field(ge=0.0, le=1.0)


class DatabaseMatch(BaseModel):
    """Product Matcher output for one illustration.

    Invariants enforced on construction:
        - exact_match set ⇒ requires_manual_input is False
        - fuzzy_matches sorted by similarity_score descending
    """

    exact_match: CatalogProduct | None = None
    fuzzy_matches: list[FuzzyMatch] = Field(default_factory=list)
    match_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    requires_manual_input: bool = True

    @model_validator(mode="after")
    def _check_invariants(self) -> DatabaseMatch:
        if self.exact_match is not None and self.requires_manual_input:
            raise ValueError("an exact match never requires manual input")
        scores = [m.similarity_score for m in self.fuzzy_matches]
        if scores != sorted(scores, reverse=True):
            raise ValueError("fuzzy matches must be sorted by similarity_score descending")
        return self

    @property
    def best_insurance_id(self) -> str | None:
        """The product the matcher would pick without advisor input, if any."""
        if self.exact_match is not None:
            return self.exact_match.insurance_id
        if not self.requires_manual_input and self.fuzzy_matches:
            return self.fuzzy_matches[0].insurance_id
        return None
