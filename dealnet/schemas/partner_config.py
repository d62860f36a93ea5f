"""
Partner registry schema - the partners.json file operators maintain by hand.
Secrets are never stored here; token_env_var names the environment variable
holding each partner's token.
"""
from typing import Literal
from pydantic import BaseModel, Field

PartnerScope = Literal["feed", "categories", "trends", "billing", "cobranded_page"]
PartnerTier = Literal["basic", "pro"]


class PartnerConfig(BaseModel):
    key: str = Field(min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    enabled: bool = False
    # Which site this partner operates against (routing + attribution)
    site_key: str = Field(min_length=1)
    scopes: list[PartnerScope] = Field(default_factory=lambda: ["feed"])
    rate_limit_per_minute: int = Field(default=120, ge=1, le=600)
    max_limit: int = Field(default=50, ge=1, le=200)
    # Visibility tier for aggregated intelligence outputs
    tier: PartnerTier = "basic"
    token_env_var: str = Field(min_length=1)


class PartnersConfigFile(BaseModel):
    version: Literal[1]
    partners: list[PartnerConfig] = Field(default_factory=list)
