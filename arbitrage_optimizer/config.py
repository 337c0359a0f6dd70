import os
from dataclasses import fields
from typing import Dict, Optional

import yaml

from .models import BatteryParameters
from .schedule_search import SearchSettings, SearchWeights


def load_env(env_path: str = '.env') -> None:
    if os.path.exists(env_path):
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ[key] = value


class Config:
    REQUIRED_KEYS = ["p_max", "soc_min", "soc_max", "efficiency"]
    # Keys that may be overridden from the environment (upper-cased names)
    ENV_KEYS = {
        'seed': int,
        'classification_method': str,
        'p_max': float,
        'soc_min': float,
        'soc_max': float,
        'efficiency': float,
        'price_cache_dir': str,
    }

    def __init__(self, config_path: str):
        self.config_path = config_path
        load_env()
        self.data = self.load_config()
        self.validate_config()

    def load_config(self) -> Dict:
        with open(self.config_path) as f:
            data = yaml.safe_load(f) or {}
        # Override with environment variables if available
        for key, cast in self.ENV_KEYS.items():
            env_key = key.upper()
            if env_key in os.environ:
                data[key] = cast(os.environ[env_key])
        return data

    def validate_config(self) -> None:
        for key in self.REQUIRED_KEYS:
            if key not in self.data:
                raise ValueError(f"{key} not found in config")

    def __getitem__(self, key):
        return self.data[key]

    def get(self, key, default=None):
        return self.data.get(key, default)

    def battery_parameters(self) -> BatteryParameters:
        return BatteryParameters.from_dict(self.data)

    def classification_method(self) -> str:
        return self.get('classification_method', 'quantile')

    def classification_options(self) -> Optional[Dict[str, float]]:
        return self.get('classification_options')

    def search_settings(self) -> SearchSettings:
        section = self.get('search', {}) or {}
        known = {f.name for f in fields(SearchSettings)}
        return SearchSettings(**{k: v for k, v in section.items() if k in known})

    def search_weights(self) -> SearchWeights:
        section = self.get('weights', {}) or {}
        known = {f.name for f in fields(SearchWeights)}
        return SearchWeights(**{k: float(v) for k, v in section.items() if k in known})
