"""YAML configuration loader for tallyflow.

Loads pipeline.yaml from the config directory. Every key is optional:

  preview_limit           rows shown per stage card (default 3)
  fetch_limit             page size for fetch-plan queries (default 200)
  stage_tables            per-category replacement rule tables
  fetch_plans             per-category replacement backend queries
  reporting_ready_stages  per-category stage (or list of stages) feeding
                          "reporting ready"
"""

from pathlib import Path

import yaml

from tallyflow.classify.partition import DEFAULT_PREVIEW_LIMIT
from tallyflow.classify.snapshot import DEFAULT_FETCH_LIMIT, SourceQuery, build_queries
from tallyflow.classify.stages import Category, StageRule, as_category, compile_table


class Config:
    """Loads and provides access to pipeline.yaml."""

    FILENAME = "pipeline.yaml"

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._pipeline: dict | None = None
        self._stage_tables: dict[Category, list[StageRule]] | None = None
        self._fetch_plans: dict[Category, list[SourceQuery]] | None = None

    def _load(self, filename: str) -> dict:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping at top level of {path}")
        return data

    @property
    def pipeline(self) -> dict:
        if self._pipeline is None:
            self._pipeline = self._load(self.FILENAME)
        return self._pipeline

    def _per_category(self, key: str) -> dict[Category, object]:
        section = self.pipeline.get(key) or {}
        if not isinstance(section, dict):
            raise ValueError(f"'{key}' must map category names to values")
        return {as_category(name): value for name, value in section.items()}

    @property
    def preview_limit(self) -> int:
        limit = self.pipeline.get("preview_limit", DEFAULT_PREVIEW_LIMIT)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"preview_limit must be a positive integer, got {limit!r}")
        return limit

    @property
    def fetch_limit(self) -> int:
        limit = self.pipeline.get("fetch_limit", DEFAULT_FETCH_LIMIT)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"fetch_limit must be a positive integer, got {limit!r}")
        return limit

    @property
    def stage_tables(self) -> dict[Category, list[StageRule]]:
        """Compiled table overrides. Categories not listed use the defaults."""
        if self._stage_tables is None:
            self._stage_tables = {
                category: compile_table(entries)
                for category, entries in self._per_category("stage_tables").items()
            }
        return self._stage_tables

    @property
    def fetch_plans(self) -> dict[Category, list[SourceQuery]]:
        if self._fetch_plans is None:
            self._fetch_plans = {
                category: build_queries(entries, limit=self.fetch_limit)
                for category, entries in self._per_category("fetch_plans").items()
            }
        return self._fetch_plans

    @property
    def reporting_ready_stages(self) -> dict[Category, list[str]]:
        stages = {}
        for category, value in self._per_category("reporting_ready_stages").items():
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list) or not value:
                raise ValueError(
                    f"reporting_ready_stages.{category.value} must be a stage or a list of stages"
                )
            stages[category] = [str(stage) for stage in value]
        return stages
