"""Load declared environment configuration and module sources from YAML."""

from pathlib import Path
from typing import Dict, Any, Union
import yaml
from pydantic import ValidationError
from .models import EnvironmentSpec
from ..utils.errors import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger("ingest.config_loader")

MODULE_FILENAME = "module.yaml"
_DEFINITION_KEYS = ("variables", "resources", "outputs")


def _read_yaml(path: Path, what: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {what} {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error reading {what} {path}: {e}")
    
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{what.capitalize()} {path} must contain a dictionary")
    return data


def resolve_module_source(source: str, base_dir: Path) -> Path:
    """
    Resolve a module source to its definition file.
    
    Relative sources are resolved against the environment file's directory.
    A directory source must contain module.yaml.
    
    Raises:
        ConfigurationError: If the source does not exist
    """
    path = Path(source)
    if not path.is_absolute():
        path = base_dir / path
    
    if path.is_dir():
        path = path / MODULE_FILENAME
    
    if not path.is_file():
        raise ConfigurationError(f"Module source not found: {source} (looked for {path})")
    return path


def load_module_definition(path: Path) -> Dict[str, Any]:
    """Load a module definition (variables, resources, outputs) from YAML."""
    data = _read_yaml(path, "module definition")
    unknown = sorted(set(data) - set(_DEFINITION_KEYS))
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in module definition {path}: {', '.join(unknown)}. "
            f"Expected: {', '.join(_DEFINITION_KEYS)}"
        )
    return data


def parse_environment(data: Dict[str, Any], base_dir: Union[str, Path] = ".") -> EnvironmentSpec:
    """
    Build an EnvironmentSpec from a parsed environment document.
    
    Module blocks with a `source` have their definition merged in. Sources of
    disabled modules are not read.
    
    Args:
        data: Parsed environment document
        base_dir: Directory relative sources are resolved against
        
    Returns:
        Validated EnvironmentSpec
        
    Raises:
        ConfigurationError: If the document or a module source is invalid
    """
    base_dir = Path(base_dir)
    modules = data.get("modules", [])
    if not isinstance(modules, list):
        raise ConfigurationError("'modules' must be a list")
    
    merged_modules = []
    for idx, block in enumerate(modules):
        if not isinstance(block, dict):
            raise ConfigurationError(f"Module at index {idx} must be a dictionary")
        block = dict(block)
        source = block.get("source")
        if source and block.get("enabled", True):
            inline = [key for key in _DEFINITION_KEYS if key in block]
            if inline:
                raise ConfigurationError(
                    f"Module '{block.get('name', idx)}' declares both a source and inline {', '.join(inline)}"
                )
            definition = load_module_definition(resolve_module_source(source, base_dir))
            block.update(definition)
            logger.debug(f"Loaded module '{block.get('name')}' from {source}")
        merged_modules.append(block)
    
    try:
        return EnvironmentSpec(environment=data.get("environment"), modules=merged_modules)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid environment configuration: {e}")


def load_environment_file(config_path: Union[str, Path]) -> EnvironmentSpec:
    """
    Load declared environment configuration.
    
    Args:
        config_path: Path to environment YAML file
        
    Returns:
        Validated EnvironmentSpec
        
    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    path = Path(config_path)
    
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}. "
            "Please check the file path and ensure the file exists."
        )
    
    if not path.is_file():
        raise ConfigurationError(f"Path is not a file: {config_path}")
    
    data = _read_yaml(path, "environment file")
    spec = parse_environment(data, base_dir=path.parent)
    
    enabled = [m.name for m in spec.modules if m.enabled]
    logger.info(
        f"Loaded environment configuration from {config_path} "
        f"(modules: {len(spec.modules)}, enabled: {len(enabled)})"
    )
    return spec
