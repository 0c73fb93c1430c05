"""Simple YAML configuration loader for Earshot."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..audio.detector import DetectorConfig
from ..audio.segmenter import SegmenterConfig, SegmentationMode
from ..models.dispatch import DispatchPreference, ProviderKind, TaskCategory
from ..models.session import SessionParams

logger = logging.getLogger(__name__)


DEFAULT_PREFERENCES = {
    TaskCategory.TEXT_MESSAGE: DispatchPreference(
        ProviderKind.GROQ, "llama-3.3-70b-versatile",
        ProviderKind.GEMINI, "gemini-2.5-flash"),
    TaskCategory.SCREEN_ANALYSIS: DispatchPreference(
        ProviderKind.GROQ, "meta-llama/llama-4-maverick-17b-128e-instruct",
        ProviderKind.GEMINI, "gemini-2.5-flash"),
    TaskCategory.AUDIO_TO_TEXT: DispatchPreference(
        ProviderKind.GROQ, "llama-3.3-70b-versatile",
        ProviderKind.GEMINI, "gemini-2.5-flash"),
}

API_KEY_ENV_VARS = {
    ProviderKind.GROQ: "GROQ_API_KEY",
    ProviderKind.GEMINI: "GEMINI_API_KEY",
}

LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"


class EarshotConfig:
    """Earshot configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file (default: earshot.yaml in the
                        current directory)
        """
        self.config_file = Path(config_path or "earshot.yaml")

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ValueError(f"Failed to load configuration: {e}")

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration root must be a mapping")

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (('usage', 'storage_path'),
                             ('logging', 'file_path'),
                             ('audio', 'wav_path')):
            if section in config and isinstance(config[section], dict) and key in config[section]:
                path = config[section][key]
                if path and not os.path.isabs(path):
                    config[section][key] = str(config_dir / path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'vad.silence_threshold_ms').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'vad.mode')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    # ------------------------------------------------------------------
    # Typed getters
    # ------------------------------------------------------------------

    def get_detector_config(self) -> DetectorConfig:
        defaults = DetectorConfig()
        return DetectorConfig(
            energy_floor=float(self.get('vad.energy_floor', defaults.energy_floor)),
            energy_ceiling=float(self.get('vad.energy_ceiling', defaults.energy_ceiling)),
            voice_threshold=float(self.get('vad.voice_threshold', defaults.voice_threshold)),
            adaptive=bool(self.get('vad.adaptive', defaults.adaptive)),
            adaptive_window=int(self.get('vad.adaptive_window', defaults.adaptive_window)),
            min_threshold=float(self.get('vad.min_threshold', defaults.min_threshold)),
            max_threshold=float(self.get('vad.max_threshold', defaults.max_threshold)),
        )

    def get_segmenter_config(self) -> SegmenterConfig:
        defaults = SegmenterConfig()
        mode = self.get('vad.mode', defaults.mode.value)
        try:
            mode = SegmentationMode(mode)
        except ValueError:
            raise ValueError(f"Invalid vad.mode '{mode}', expected 'automatic' or 'manual'")

        return SegmenterConfig(
            mode=mode,
            streaming=bool(self.get('vad.streaming', defaults.streaming)),
            sample_rate=int(self.get('audio.sample_rate', defaults.sample_rate)),
            pre_roll_frames=int(self.get('vad.pre_roll_frames', defaults.pre_roll_frames)),
            post_roll_frames=int(self.get('vad.post_roll_frames', defaults.post_roll_frames)),
            min_speech_frames=int(self.get('vad.min_speech_frames', defaults.min_speech_frames)),
            silence_frames=int(self.get('vad.silence_frames', defaults.silence_frames)),
            silence_threshold_ms=float(self.get('vad.silence_threshold_ms', defaults.silence_threshold_ms)),
            min_recording_ms=float(self.get('vad.min_recording_ms', defaults.min_recording_ms)),
            max_recording_ms=float(self.get('vad.max_recording_ms', defaults.max_recording_ms)),
            detector=self.get_detector_config(),
        )

    def get_preferences(self) -> Dict[TaskCategory, DispatchPreference]:
        """Per-category provider preferences, falling back to built-in defaults."""
        preferences = dict(DEFAULT_PREFERENCES)
        for category in TaskCategory:
            data = self.get(f'preferences.{category.value}')
            if data:
                try:
                    preferences[category] = DispatchPreference.from_dict(data)
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Invalid preference for {category.value}: {e}")
        return preferences

    def get_api_keys(self) -> Dict[str, str]:
        """API keys from the config file, or from GROQ_API_KEY / GEMINI_API_KEY."""
        keys = {}
        for kind, env_var in API_KEY_ENV_VARS.items():
            key = self.get(f'providers.{kind.value}.api_key') or os.environ.get(env_var)
            if key:
                keys[kind.value] = key
            else:
                logger.warning(f"No API key configured for {kind.value}")
        return keys

    def get_base_urls(self) -> Dict[str, str]:
        urls = {}
        for kind in ProviderKind:
            url = self.get(f'providers.{kind.value}.base_url')
            if url:
                urls[kind.value] = url
        return urls

    def get_limit_overrides(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return self.get('limits', {}) or {}

    def get_usage_path(self) -> str:
        """Get usage ledger file path."""
        path = self.get('usage.storage_path', 'data/usage.json')
        return str(Path(path).absolute())

    def get_session_params(self) -> Optional[SessionParams]:
        """Live session parameters, or None when no Gemini key is available."""
        api_key = self.get_api_keys().get(ProviderKind.GEMINI.value)
        if not api_key:
            return None
        return SessionParams(
            api_key=api_key,
            model=self.get('session.model', LIVE_MODEL),
            instruction=self.get('session.instruction', ''),
            language=self.get('session.language', 'en-US'),
        )
