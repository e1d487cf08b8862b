"""YAML configuration parser for the deployment pipeline."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from deploy_pipeline.config.models import PipelineConfig
from deploy_pipeline.utils.errors import ConfigError, ConfigErrorKind, ErrorContext

REQUIRED_SECTIONS = ("registry", "service")


class ConfigValidationError(ConfigError):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        super().__init__(
            message,
            kind=ConfigErrorKind.INVALID_CONFIG,
            context=ErrorContext(stage="config")
        )
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Loads and validates a pipeline configuration file."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to the pipeline YAML file
        """
        self.config_path = Path(config_path)
        self.data: Dict[str, Any] = {}
        self.pipeline: Optional[PipelineConfig] = None

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        self.pipeline = self.parse(self.data)
        return self

    @classmethod
    def parse(cls, data: Any) -> PipelineConfig:
        """Validate raw configuration data.

        Args:
            data: Mapping loaded from YAML

        Returns:
            PipelineConfig

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = cls.validate(data)
        if errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )
        return PipelineConfig.model_validate(data)

    @staticmethod
    def validate(data: Any) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        if not isinstance(data, dict):
            return [{"loc": [], "msg": "Configuration must be a mapping"}]

        errors = [
            {"loc": [section], "msg": f"Required section '{section}' is missing"}
            for section in REQUIRED_SECTIONS
            if section not in data
        ]
        if errors:
            return errors

        try:
            PipelineConfig.model_validate(data)
        except ValidationError as e:
            for error in e.errors():
                errors.append({"loc": list(error["loc"]), "msg": error["msg"]})

        return errors

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary."""
        return self.pipeline.model_dump(by_alias=True) if self.pipeline else {}
