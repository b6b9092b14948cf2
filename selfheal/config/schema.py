from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from selfheal.core.metadata import TrustLevel

DEFAULT_FORBIDDEN_KEYWORDS = [
    "delete",
    "remove",
    "cancel",
    "unsubscribe",
    "terminate",
    "deactivate",
    "permanently",
    "irreversible",
    "close account",
    "削除",
    "取り消し",
    "löschen",
    "supprimer",
    "eliminar",
    "удалить",
]


class CircuitBreakerConfig(BaseModel):
    enabled: bool = True
    failure_threshold: int = Field(default=3, ge=1)
    window_seconds: float = Field(default=300.0, gt=0)
    cooldown_seconds: float = Field(default=1800.0, ge=0)


class TrustConfig(BaseModel):
    initial_level: TrustLevel = TrustLevel.L1_SUGGEST
    min_level: TrustLevel = TrustLevel.L0_SHADOW
    max_level: TrustLevel = TrustLevel.L3_AUTO_ALL
    successes_to_promote: int = Field(default=10, ge=1)
    failure_window_seconds: float = Field(default=3600.0, gt=0)
    auto_apply_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("initial_level", "min_level", "max_level", mode="before")
    @classmethod
    def parse_level(cls, value):
        return TrustLevel.parse(value)

    @model_validator(mode="after")
    def validate_bounds(self) -> TrustConfig:
        if not self.min_level <= self.initial_level <= self.max_level:
            raise ValueError(
                f"initial_level {self.initial_level.name} must lie between "
                f"{self.min_level.name} and {self.max_level.name}"
            )
        return self


class GuardrailConfig(BaseModel):
    allow_js_click: bool = False
    min_heuristic_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    ambiguity_margin: float = Field(default=0.05, ge=0.0, le=1.0)
    max_candidates: int = Field(default=5, ge=1)
    interactable_timeout_seconds: float = Field(default=5.0, ge=0)
    lookup_timeout_seconds: float = Field(default=0.0, ge=0)
    forbidden_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_FORBIDDEN_KEYWORDS))

    @field_validator("forbidden_keywords")
    @classmethod
    def normalize_keywords(cls, value: list[str]) -> list[str]:
        return [item.strip().lower() for item in value if item.strip()]


class ApprovalConfig(BaseModel):
    timeout_seconds: float = Field(default=300.0, gt=0)


class CacheConfig(BaseModel):
    enabled: bool = True


class HealerConfig(BaseModel):
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    guardrails: GuardrailConfig = Field(default_factory=GuardrailConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    artifacts_root: str | None = "artifacts"
