"""
Configuration management and loading.

Describes the fallback chain, backoff policy, quota and access rules.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import yaml


@dataclass(frozen=True)
class ModelEndpointConfig:
    """One candidate backend in the fallback chain.

    retry_budget is the total number of calls allowed against this
    endpoint for a single request, first attempt included.
    """
    id: str
    model: str
    priority: int
    capabilities: FrozenSet[str] = frozenset()
    retry_budget: int = 2
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate endpoint values."""
        if not self.id or not self.id.strip():
            raise ValueError("endpoint id is required and cannot be empty")
        if not self.model or not self.model.strip():
            raise ValueError(f"endpoint {self.id}: model cannot be empty")
        if self.retry_budget < 1:
            raise ValueError(f"endpoint {self.id}: retry_budget must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError(f"endpoint {self.id}: timeout_seconds must be > 0")

    def supports(self, capabilities: FrozenSet[str]) -> bool:
        return capabilities <= self.capabilities


@dataclass(frozen=True)
class BackoffConfig:
    """Exponential backoff between retries on the same endpoint."""
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25

    def __post_init__(self):
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")


@dataclass(frozen=True)
class QuotaConfig:
    """Free question allowance for non-privileged identities."""
    free_questions: int = 5

    def __post_init__(self):
        if self.free_questions < 0:
            raise ValueError("free_questions must be >= 0")


@dataclass(frozen=True)
class AccessConfig:
    privileged_roles: FrozenSet[str] = frozenset({"admin"})


@dataclass(frozen=True)
class PersistenceConfig:
    timeout_seconds: float = 10.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("persistence timeout_seconds must be > 0")


@dataclass(frozen=True)
class BackendConfig:
    """Connection settings for the OpenAI-compatible generation API."""
    base_url: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"


@dataclass(frozen=True)
class ChatGuardConfig:
    """Complete application configuration."""
    endpoints: Tuple[ModelEndpointConfig, ...]
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    def __post_init__(self):
        if not self.endpoints:
            raise ValueError("at least one endpoint must be configured")
        ids = [endpoint.id for endpoint in self.endpoints]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate endpoint ids: {duplicates}")

    def fallback_chain(self) -> List[ModelEndpointConfig]:
        """Endpoints in ascending priority; ties keep declaration order."""
        return sorted(self.endpoints, key=lambda endpoint: endpoint.priority)


def load_config(path: str) -> ChatGuardConfig:
    """Load and validate application configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ChatGuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")

    return parse_config(raw_config)


def parse_config(raw_config: Dict[str, Any]) -> ChatGuardConfig:
    """Build a ChatGuardConfig from an already-parsed mapping."""
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _check_keys(
        raw_config,
        {'endpoints', 'backoff', 'quota', 'access', 'persistence', 'backend'},
        "configuration",
    )

    if 'endpoints' not in raw_config:
        raise ValueError("Missing required 'endpoints' section")
    endpoints_data = raw_config['endpoints']
    if not isinstance(endpoints_data, list) or not endpoints_data:
        raise ValueError("'endpoints' must be a non-empty list")

    endpoints = tuple(
        _parse_endpoint(item, f"endpoints[{index}]")
        for index, item in enumerate(endpoints_data)
    )

    backoff_data = _section(raw_config, 'backoff')
    _check_keys(backoff_data, {'base_delay', 'max_delay', 'jitter'}, "backoff")
    backoff = BackoffConfig(
        base_delay=float(backoff_data.get('base_delay', 0.5)),
        max_delay=float(backoff_data.get('max_delay', 8.0)),
        jitter=float(backoff_data.get('jitter', 0.25)),
    )

    quota_data = _section(raw_config, 'quota')
    _check_keys(quota_data, {'free_questions'}, "quota")
    free_questions = quota_data.get('free_questions', 5)
    if not isinstance(free_questions, int) or isinstance(free_questions, bool):
        raise ValueError("'free_questions' in quota must be an integer")

    access_data = _section(raw_config, 'access')
    _check_keys(access_data, {'privileged_roles'}, "access")
    roles = access_data.get('privileged_roles', ["admin"])
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        raise ValueError("'privileged_roles' in access must be a list of strings")

    persistence_data = _section(raw_config, 'persistence')
    _check_keys(persistence_data, {'timeout_seconds'}, "persistence")

    backend_data = _section(raw_config, 'backend')
    _check_keys(backend_data, {'base_url', 'api_key_env'}, "backend")

    return ChatGuardConfig(
        endpoints=endpoints,
        backoff=backoff,
        quota=QuotaConfig(free_questions=free_questions),
        access=AccessConfig(
            privileged_roles=frozenset(r.strip().lower() for r in roles if r.strip())
        ),
        persistence=PersistenceConfig(
            timeout_seconds=float(persistence_data.get('timeout_seconds', 10.0))
        ),
        backend=BackendConfig(
            base_url=backend_data.get('base_url'),
            api_key_env=backend_data.get('api_key_env', "OPENAI_API_KEY"),
        ),
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_endpoint(data: Any, path: str) -> ModelEndpointConfig:
    """Parse and validate one endpoint entry.

    Args:
        data: Endpoint configuration data
        path: Path for error messages

    Returns:
        Validated ModelEndpointConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    _check_keys(
        data,
        {'id', 'model', 'priority', 'capabilities', 'retry_budget', 'timeout_seconds'},
        path,
    )

    if 'id' not in data or not isinstance(data['id'], str):
        raise ValueError(f"Missing required string 'id' in {path}")
    if 'priority' not in data:
        raise ValueError(f"Missing required 'priority' in {path}")

    priority = data['priority']
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise ValueError(f"'priority' in {path} must be an integer")

    retry_budget = data.get('retry_budget', 2)
    if not isinstance(retry_budget, int) or isinstance(retry_budget, bool):
        raise ValueError(f"'retry_budget' in {path} must be an integer")

    timeout = data.get('timeout_seconds', 30.0)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool):
        raise ValueError(f"'timeout_seconds' in {path} must be a number")

    capabilities = data.get('capabilities', [])
    if not isinstance(capabilities, list) or not all(isinstance(c, str) for c in capabilities):
        raise ValueError(f"'capabilities' in {path} must be a list of strings")

    return ModelEndpointConfig(
        id=data['id'],
        model=data.get('model') or data['id'],
        priority=priority,
        capabilities=frozenset(c.strip().lower() for c in capabilities),
        retry_budget=retry_budget,
        timeout_seconds=float(timeout),
    )
