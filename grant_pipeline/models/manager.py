from __future__ import annotations
from typing import Optional, Dict, Any, List, Union
from pathlib import Path
from dataclasses import dataclass, field
from enum import Enum
import os
import yaml
import logging
import threading
from contextlib import contextmanager

from .prompts import PromptManager
from .providers.base import ChatRequest, ModelResponse
from .providers.ollama import OllamaProvider
from .providers.openai_sdk import OpenAIProvider

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parents[1] / "config" / "config.yaml"
CONFIG_ENV_VAR = "GRANT_PIPELINE_CONFIG"


class Provider(Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"

class BudgetStrategy(Enum):
    TRUNCATE = "truncate"
    COMPRESS = "compress"

class TruncateUnit(Enum):
    CHARS = "chars"
    WORDS = "words"

# keys of a task entry that a profile override merges into instead of replacing
_MERGED_KEYS = ("params", "budgets", "variables")


@dataclass(frozen=True)
class StageProfile:
    """Resolved numeric configuration for one stage under one named profile."""
    stage: str
    profile: str
    provider: str
    model: str
    prompt_ref: str
    timeout: float
    params: Dict[str, Any] = field(default_factory=dict)
    budgets: Dict[str, int] = field(default_factory=dict)
    truncate_unit: str = TruncateUnit.CHARS.value
    budget_strategy: str = BudgetStrategy.TRUNCATE.value
    compress_input_cap: Optional[int] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    submission_ready: bool = False

    @property
    def temperature(self) -> Optional[float]:
        return self.params.get("temperature")

    @property
    def compresses(self) -> bool:
        return self.budget_strategy == BudgetStrategy.COMPRESS.value


class ModelManager:
    def __init__(self, config_path: Union[Path, str, None] = None, prompts_dir: Optional[Path] = None):
        if config_path is None:
            config_path = os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._providers = {}
        self._providers_lock = threading.Lock()
        self._stats = {} #performance tracking
        self._stats_lock = threading.Lock()

        #initialize prompt manager
        if prompts_dir:
            self.prompts = PromptManager(prompts_dir)
        else:
            self.prompts = PromptManager(Path(__file__).parents[1] / "prompts")

        self._profiles = self._resolve_profiles()

    def _load_config(self) -> Dict:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config not found: {self.config_path}")
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Config is empty or malformed: {self.config_path}")
        if 'providers' not in config:
            raise ValueError("Config missing 'providers'")
        if 'tasks' not in config:
            raise ValueError("Config missing 'tasks'")

        for task_name, task_cfg in config['tasks'].items():
            if 'provider' not in task_cfg:
                raise ValueError(f"Task '{task_name}' missing provider")
            if 'model' not in task_cfg:
                raise ValueError(f"Task '{task_name}' missing model")
            if 'timeout' not in task_cfg:
                raise ValueError(f"Task '{task_name}' missing timeout")

            provider_name = task_cfg['provider']
            if provider_name not in config['providers']:
                raise ValueError(f"Task '{task_name}' references unknown provider '{provider_name}'")

        return config

    # --- profiles -----------------------------------------------------------

    @property
    def request_limit_s(self) -> float:
        return float(self.config.get("request_limit_s", 30))

    @property
    def default_profile(self) -> str:
        return self.config.get("default_profile", "default")

    @property
    def profile_names(self) -> List[str]:
        names = list(self.config.get("profiles") or [])
        if self.default_profile not in names:
            names.insert(0, self.default_profile)
        return names

    @property
    def compression(self) -> Dict[str, Any]:
        return dict(self.config.get("compression") or {})

    def _merge_profile(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        merged = {k: v for k, v in base.items() if k != "profiles"}
        for key, value in (override or {}).items():
            if key in _MERGED_KEYS:
                merged[key] = {**(merged.get(key) or {}), **(value or {})}
            else:
                merged[key] = value
        return merged

    def _resolve_profiles(self) -> Dict[tuple, StageProfile]:
        resolved = {}
        known = set(self.profile_names)
        max_temp = float(self.config.get("max_submission_temperature", 0.3))
        compression_timeout = float(self.compression.get("timeout", 0))

        for task_name, task_cfg in self.config["tasks"].items():
            overrides = task_cfg.get("profiles") or {}
            unknown = set(overrides) - known
            if unknown:
                raise ValueError(f"Task '{task_name}' overrides unknown profile(s): {sorted(unknown)}")

            for profile_name in self.profile_names:
                cfg = self._merge_profile(task_cfg, overrides.get(profile_name, {}))
                profile = StageProfile(
                    stage=task_name,
                    profile=profile_name,
                    provider=cfg["provider"],
                    model=cfg["model"],
                    prompt_ref=cfg.get("prompt_ref", f"stages/{task_name}@v1"),
                    timeout=float(cfg["timeout"]),
                    params=dict(cfg.get("params") or {}),
                    budgets={k: int(v) for k, v in (cfg.get("budgets") or {}).items()},
                    truncate_unit=cfg.get("truncate_unit", TruncateUnit.CHARS.value),
                    budget_strategy=cfg.get("budget_strategy", BudgetStrategy.TRUNCATE.value),
                    compress_input_cap=cfg.get("compress_input_cap"),
                    variables=dict(cfg.get("variables") or {}),
                    submission_ready=bool(cfg.get("submission_ready", False)),
                )
                self._check_profile(profile, max_temp, compression_timeout)
                resolved[(task_name, profile_name)] = profile
        return resolved

    def _check_profile(self, profile: StageProfile, max_temp: float, compression_timeout: float):
        where = f"Task '{profile.stage}' (profile '{profile.profile}')"
        if profile.provider not in self.config["providers"]:
            raise ValueError(f"{where} references unknown provider '{profile.provider}'")
        if profile.truncate_unit not in {u.value for u in TruncateUnit}:
            raise ValueError(f"{where} has unknown truncate_unit '{profile.truncate_unit}'")
        if profile.budget_strategy not in {s.value for s in BudgetStrategy}:
            raise ValueError(f"{where} has unknown budget_strategy '{profile.budget_strategy}'")
        if any(limit <= 0 for limit in profile.budgets.values()):
            raise ValueError(f"{where} has a non-positive budget")
        if profile.timeout <= 0:
            raise ValueError(f"{where} timeout must be positive")

        worst_case = profile.timeout + (compression_timeout if profile.compresses else 0)
        if worst_case >= self.request_limit_s:
            raise ValueError(
                f"{where} timeout {worst_case:g}s must stay below the request limit of {self.request_limit_s:g}s"
            )
        if profile.submission_ready and (profile.temperature is None or profile.temperature > max_temp):
            raise ValueError(
                f"{where} produces submission-ready text and needs temperature <= {max_temp}, got {profile.temperature}"
            )

    def stage_profile(self, task: str, profile: Optional[str] = None) -> StageProfile:
        profile = profile or self.default_profile
        if task not in self.config["tasks"]:
            raise ValueError(f"Unknown task: {task}")
        if profile not in self.profile_names:
            raise ValueError(f"Unknown profile: {profile}")
        return self._profiles[(task, profile)]

    # --- providers ----------------------------------------------------------

    def _get_provider(self, provider_name: str):
        with self._providers_lock:
            if provider_name in self._providers:
                return self._providers[provider_name]
            if provider_name not in self.config['providers']:
                raise ValueError(f"Unknown provider: {provider_name}")

            provider_cfg = self.config["providers"][provider_name]
            provider_type = provider_cfg["type"]
            settings = provider_cfg.get("settings", {}) or {}

            if provider_type == Provider.OLLAMA.value:
                provider = OllamaProvider(**settings)
            elif provider_type == Provider.OPENAI.value:
                provider = OpenAIProvider(**settings)
            else:
                raise ValueError(f"Unknown provider type: {provider_type}")
            self._providers[provider_name] = provider
            logger.info(f"initialized provider: {provider_name}")
            return provider

    def warm_up(self):
        """Build every provider a task references so request handling never constructs clients."""
        for name in sorted({cfg["provider"] for cfg in self.config["tasks"].values()}):
            self._get_provider(name)

    # --- calls --------------------------------------------------------------

    def call(self, task: str, variables: Dict[str, Any], profile: Optional[str] = None) -> ModelResponse:
        """
        Render the task prompt for ``profile`` and send it to the task provider.

        Blocking. Stats are not recorded here: the caller decides whether the
        result was used and reports it through track_stats.
        """
        stage = self.stage_profile(task, profile)
        request = ChatRequest(
            model=stage.model,
            messages=self.prompts.render(stage.prompt_ref, variables),
            params=dict(stage.params),
        )
        return self._get_provider(stage.provider).chat(request)

    def track_stats(self, task: str, latency_ms: float, success: bool):
        with self._stats_lock:
            stats = self._stats.setdefault(task, {
                'total_calls': 0,
                'successful_calls': 0,
                'total_latency_ms': 0
            })
            stats['total_calls'] += 1
            if success:
                stats['successful_calls'] += 1
                stats['total_latency_ms'] += latency_ms

    def get_stats(self, task: Optional[str] = None) -> Dict:
        with self._stats_lock:
            if task:
                return dict(self._stats.get(task, {}))
            return {name: dict(stats) for name, stats in self._stats.items()}

    def cleanup(self):
        with self._providers_lock:
            for name, provider in self._providers.items():
                if hasattr(provider, 'cleanup'):
                    try:
                        provider.cleanup()
                        logger.info(f"Cleaned up provider: {name}")
                    except Exception as e:
                        logger.error(f"Cleanup failed for {name}: {e}")

            self._providers.clear()

    @contextmanager
    def session(self):
        try:
            yield self
        finally:
            self.cleanup()
