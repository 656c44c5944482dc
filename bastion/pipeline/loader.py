"""Pipeline loader and validator.

Loads pipeline configurations from YAML files, resolves environment
variables, validates them, and provides access to preset pipelines.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from bastion.pipeline.schema import PipelineConfig, StageKind
from bastion.tools.registry import ToolRegistry, ToolSpec, default_registry

logger = logging.getLogger(__name__)

# ${VAR} or ${VAR:-default}, anywhere in a string
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

PRESETS_DIR = Path(__file__).parent.parent.parent / "config" / "pipelines"


class PipelineLoader:
    """Load and validate pipeline configurations."""

    def __init__(
        self,
        tool_registry: Optional[ToolRegistry] = None,
        presets_dir: Optional[Path] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize pipeline loader.

        Args:
            tool_registry: Registry used to validate tool references
            presets_dir: Directory holding preset YAML files
            environ: Environment used for ${VAR} resolution (defaults to os.environ)
        """
        self.tool_registry = tool_registry or default_registry()
        self.presets_dir = Path(presets_dir) if presets_dir else PRESETS_DIR
        self.environ = environ
        self._preset_cache: Dict[str, PipelineConfig] = {}

    def load_from_yaml(self, yaml_path: Path) -> PipelineConfig:
        """
        Load pipeline from YAML file.

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If pipeline is invalid
            yaml.YAMLError: If YAML is malformed
            ValueError: If the pipeline references unknown tools
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Pipeline file not found: {yaml_path}")

        with open(yaml_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if not isinstance(raw_config, dict):
            raise ValueError(f"Pipeline file {yaml_path} must contain a mapping")

        logger.debug(f"Loaded pipeline file {yaml_path}")
        return self.load_from_dict(raw_config)

    def load_preset(self, preset_name: str) -> PipelineConfig:
        """
        Load a preset pipeline by name (e.g. 'full_ci_cd').

        Raises:
            FileNotFoundError: If preset doesn't exist
        """
        if preset_name in self._preset_cache:
            return self._preset_cache[preset_name]

        pipeline = self.load_from_yaml(self.presets_dir / f"{preset_name}.yaml")
        pipeline.is_preset = True
        self._preset_cache[preset_name] = pipeline
        return pipeline

    def list_presets(self) -> List[str]:
        """List available preset pipelines."""
        if not self.presets_dir.exists():
            return []
        return sorted(yaml_file.stem for yaml_file in self.presets_dir.glob("*.yaml"))

    def load_from_dict(self, config_dict: Dict[str, Any]) -> PipelineConfig:
        """
        Load pipeline from dictionary (env vars are resolved first).

        Raises:
            pydantic.ValidationError: If pipeline is invalid
            ValueError: If the pipeline references unknown tools
        """
        pipeline = PipelineConfig(**self.resolve_env_vars(config_dict))
        self._register_tools(pipeline)
        self._validate_tool_references(pipeline)
        return pipeline

    def resolve_env_vars(self, value: Any) -> Any:
        """Resolve ${VAR} and ${VAR:-default} in config values."""
        environ = os.environ if self.environ is None else self.environ

        if isinstance(value, str):
            def replace_env(match):
                var_name, default = match.group(1), match.group(2)
                env_value = environ.get(var_name)
                if env_value is None:
                    if default is None:
                        logger.warning(f"Environment variable '{var_name}' not set, using empty string")
                        return ""
                    return default
                return env_value

            return ENV_VAR_PATTERN.sub(replace_env, value)
        elif isinstance(value, dict):
            return {k: self.resolve_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve_env_vars(item) for item in value]
        return value

    def _register_tools(self, pipeline: PipelineConfig):
        for tool_config in pipeline.tools:
            self.tool_registry.register(ToolSpec(**tool_config))

    def _validate_tool_references(self, pipeline: PipelineConfig):
        """
        Validate that all tool references in the pipeline exist.

        Raises:
            ValueError: If a tool doesn't exist
        """
        for stage in pipeline.stages:
            if stage.kind != StageKind.SCAN:
                continue
            for tool_id in stage.tools:
                if not self.tool_registry.get(tool_id):
                    raise ValueError(f"Stage '{stage.id}': tool '{tool_id}' is not registered")

    def validate_pipeline(self, pipeline: PipelineConfig) -> List[str]:
        """
        Validate pipeline and return list of warnings/issues.

        Returns:
            List of warning messages (empty if no issues)
        """
        warnings = []

        for i, stage in enumerate(pipeline.stages):
            if i > 0 and not stage.depends_on:
                warnings.append(f"Stage '{stage.id}' has no depends_on (runs in parallel with the first stage)")
            if not stage.enabled:
                warnings.append(f"Stage '{stage.id}' is disabled; its dependents will be skipped")

        for stage in pipeline.stages:
            if stage.kind == StageKind.SCAN:
                advisory_only = all(
                    stage.policy.rule_for(tool_id).advisory for tool_id in stage.tools
                )
                if advisory_only:
                    warnings.append(f"Scan stage '{stage.id}' has only advisory tools (gate can never fail)")
            if stage.kind == StageKind.DEPLOY and not stage.depends_on:
                warnings.append(f"Deploy stage '{stage.id}' has no upstream gate")

        return warnings
