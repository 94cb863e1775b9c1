"""YAML configuration parser for stack deployments."""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from stack_deploy.utils.digest import parse_template_body

from .models import DeployOptions, EngineSettings, StackConfig


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  • {location}: {msg}")

        return "\n".join(error_lines)


def parse_parameter_flags(values: Iterable[str]) -> Dict[str, Dict[str, Optional[str]]]:
    """Parse ``Key=Value`` and ``Stack:Key=Value`` parameter flags.

    Unqualified parameters land in the ``*`` bucket that applies to every
    stack. An empty value (``Key=``) is kept as ``None``, meaning "not
    supplied".

    Raises:
        ConfigValidationError: If a flag has no ``=``
    """
    result: Dict[str, Dict[str, Optional[str]]] = {"*": {}}
    for raw in values:
        if "=" not in raw:
            raise ConfigValidationError(f"Parameters must be given as Key=Value or Stack:Key=Value, got '{raw}'")
        name, value = raw.split("=", 1)
        stack, _, key = name.rpartition(":")
        result.setdefault(stack or "*", {})[key] = value or None
    return result


class Config:
    """Configuration manager for stack deployments."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to stack-deploy.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.settings: EngineSettings = EngineSettings()
        self.options: DeployOptions = DeployOptions()
        self.stacks: List[StackConfig] = []

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

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.settings = EngineSettings(**self.data.get("settings", {}))
        self.options = DeployOptions(**self.data.get("options", {}))
        self.stacks = [StackConfig(**stack_data) for stack_data in self.data["stacks"]]

        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        for section, model in (("settings", EngineSettings), ("options", DeployOptions)):
            if section in self.data:
                errors.extend(self._model_errors([section], model, self.data[section]))

        if "stacks" not in self.data:
            errors.append({"loc": ["stacks"], "msg": "Required field 'stacks' is missing"})
            return errors
        if not isinstance(self.data["stacks"], list) or len(self.data["stacks"]) == 0:
            errors.append({"loc": ["stacks"], "msg": "At least one stack must be defined"})
            return errors

        names = set()
        for idx, stack_data in enumerate(self.data["stacks"]):
            stack_errors = self._model_errors(["stacks", idx], StackConfig, stack_data)
            errors.extend(stack_errors)
            if not stack_errors:
                name = stack_data["name"]
                if name in names:
                    errors.append({"loc": ["stacks", idx, "name"], "msg": f"Duplicate stack name '{name}'"})
                names.add(name)

        for idx, stack_data in enumerate(self.data["stacks"]):
            if not isinstance(stack_data, dict):
                continue
            for dependency in stack_data.get("depends_on", []) or []:
                if dependency not in names:
                    errors.append(
                        {
                            "loc": ["stacks", idx, "depends_on"],
                            "msg": f"Unknown stack '{dependency}'",
                        }
                    )

        return errors

    @staticmethod
    def _model_errors(location: List[Any], model, data: Any) -> List[Dict]:
        if not isinstance(data, dict):
            return [{"loc": location, "msg": "Must be a mapping"}]
        try:
            model(**data)
        except ValidationError as e:
            return [{"loc": location + list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
        return []

    def get_stacks(self, names: Optional[Iterable[str]] = None) -> List[StackConfig]:
        """Get stack configurations in file order.

        Args:
            names: Optional stack names to select

        Raises:
            ConfigValidationError: If a requested stack is not configured
        """
        if not names:
            return list(self.stacks)

        wanted = list(names)
        known = {stack.name for stack in self.stacks}
        unknown = [name for name in wanted if name not in known]
        if unknown:
            raise ConfigValidationError(
                f"Stack(s) not found: {', '.join(unknown)}. Available stacks: {', '.join(sorted(known))}"
            )
        return [stack for stack in self.stacks if stack.name in wanted]

    def load_template(self, stack: StackConfig) -> Dict[str, Any]:
        """Read a stack's template, resolved relative to the config file.

        Raises:
            ConfigValidationError: If the template cannot be read or parsed
        """
        path = self.resolve_path(stack.template)
        try:
            document = parse_template_body(path.read_text())
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Failed to read template for stack '{stack.name}' from {path}: {e}")

        if not isinstance(document, dict):
            raise ConfigValidationError(f"Template for stack '{stack.name}' must be a mapping: {path}")
        return document

    def resolve_path(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.config_path.parent / candidate
