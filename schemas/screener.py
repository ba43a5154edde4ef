from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SortField = Literal["price", "marketCap", "pe", "dividendYield", "name"]


class ScreenerFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    min_price: Optional[float] = Field(default=None, alias="minPrice", ge=0)
    max_price: Optional[float] = Field(default=None, alias="maxPrice", gt=0)
    min_market_cap: Optional[float] = Field(default=None, alias="minMarketCap", ge=0)
    max_market_cap: Optional[float] = Field(default=None, alias="maxMarketCap", gt=0)
    min_pe: Optional[float] = Field(default=None, alias="minPE")
    max_pe: Optional[float] = Field(default=None, alias="maxPE")
    min_dividend_yield: Optional[float] = Field(default=None, alias="minDividendYield", ge=0, le=100)
    max_dividend_yield: Optional[float] = Field(default=None, alias="maxDividendYield", ge=0, le=100)
    sectors: List[str] = Field(default_factory=list)
    sort_by: SortField = Field(default="marketCap", alias="sortBy")
    sort_order: Literal["asc", "desc"] = Field(default="desc", alias="sortOrder")
    limit: int = Field(default=50, ge=1, le=100)

    @field_validator("sectors")
    @classmethod
    def clean_sectors(cls, value: List[str]) -> List[str]:
        return sorted({s.strip() for s in value if s and s.strip()})

    @model_validator(mode="after")
    def check_ranges(self) -> "ScreenerFilters":
        for lo, hi in (
            ("min_price", "max_price"),
            ("min_market_cap", "max_market_cap"),
            ("min_pe", "max_pe"),
            ("min_dividend_yield", "max_dividend_yield"),
        ):
            lo_v, hi_v = getattr(self, lo), getattr(self, hi)
            if lo_v is not None and hi_v is not None and lo_v > hi_v:
                raise ValueError("Min values cannot be greater than max values")
        return self

    def cache_fields(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
