"""Configuration management for Self-Evolution."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

CONFIG_ENV_VAR = "SELF_EVOLUTION_CONFIG"


class KnowledgeConfig(BaseModel):
    """Knowledge base persistence configuration."""

    storage_dir: Path = Path(".knowledge-base")
    persist: bool = True


class DetectionConfig(BaseModel):
    """Thresholds that turn metric snapshots into challenges."""

    cpu_high: float = Field(default=80.0, ge=0.0, le=100.0)
    cpu_critical: float = Field(default=90.0, ge=0.0, le=100.0)
    memory_high: float = Field(default=85.0, ge=0.0, le=100.0)
    memory_critical: float = Field(default=95.0, ge=0.0, le=100.0)
    error_rate_high: float = Field(default=5.0, ge=0.0, le=100.0)
    error_rate_critical: float = Field(default=10.0, ge=0.0, le=100.0)
    response_time_medium: float = Field(default=1000.0, ge=0.0)
    response_time_high: float = Field(default=3000.0, ge=0.0)
    queue_medium: int = Field(default=50, ge=0)
    queue_high: int = Field(default=100, ge=0)
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class AnalysisConfig(BaseModel):
    """Candidate ranking and auto-execution gate."""

    auto_execute_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    historical_weight: float = Field(default=0.7, ge=0.0, le=1.0)


class ExecutionConfig(BaseModel):
    """Execution queue and success criteria."""

    cooldown_seconds: float = Field(default=5.0, ge=0.0, le=3600.0)
    success_threshold: float = Field(default=10.0, ge=0.0, le=100.0)
    improvement_epsilon: float = Field(default=0.1, gt=0.0)


class LearningConfig(BaseModel):
    """Outcome bookkeeping and pattern promotion."""

    learning_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    min_group_size: int = Field(default=3, ge=1)
    promotion_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    extraction_interval: int = Field(default=10, ge=1)
    extraction_window: int = Field(default=50, ge=1)
    context_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    adaptation_penalty: float = Field(default=0.9, ge=0.0, le=1.0)
    max_adaptations: int = Field(default=3, ge=0, le=20)
    historical_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    pattern_overlap: float = Field(default=0.5, ge=0.0, le=1.0)


class ScheduleConfig(BaseModel):
    """Periodic self-diagnosis and learning cycle."""

    diagnosis_interval_seconds: float = Field(default=3600.0, gt=0.0)
    learning_interval_seconds: float = Field(default=1800.0, gt=0.0)
    min_success_rate: float = Field(default=0.7, ge=0.0, le=1.0)
    max_pending_challenges: int = Field(default=10, ge=0)


class TransferConfig(BaseModel):
    """Cross-instance knowledge exchange."""

    compatibility_version: str = "1.0.0"
    source_system: str = "self-evolution-system"
    endpoints: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    fallback_dir: Path = Path(".knowledge-transfer")
    generic_types: list[str] = Field(
        default_factory=lambda: ["performance", "error", "security"]
    )
    domain_targets: list[str] = Field(default_factory=lambda: ["domain", "example"])
    infrastructure_targets: list[str] = Field(default_factory=list)
    min_solution_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    min_learning_improvement: float = Field(default=20.0, ge=0.0)
    min_pattern_success: float = Field(default=0.7, ge=0.0, le=1.0)
    min_pattern_usage: int = Field(default=2, ge=1)
    adaptation_penalty: float = Field(default=0.9, ge=0.0, le=1.0)


class EvolutionConfig(BaseModel):
    """Master configuration for Self-Evolution."""

    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)

    log_level: str = "INFO"
    verbose: bool = False

    @classmethod
    def from_file(cls, config_path: Path) -> EvolutionConfig:
        """Load configuration from YAML file."""
        import yaml

        with open(config_path) as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    @classmethod
    def load(cls, config_path: Path | None = None) -> EvolutionConfig:
        """Load from an explicit path, the env-named path, or defaults."""
        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR, "")
            config_path = Path(env_path) if env_path else None
        if config_path is None:
            return cls()
        return cls.from_file(config_path)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json", exclude_none=True)
        with open(config_path, "w") as fh:
            yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
