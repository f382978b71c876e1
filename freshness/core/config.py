from pathlib import Path

import yaml

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


class Config:
    _config = None

    @classmethod
    def load(cls, path=DEFAULT_SETTINGS_PATH):
        if cls._config is None:
            with open(path, "r", encoding="utf-8") as f:
                cls._config = yaml.safe_load(f) or {}
        return cls._config

    @classmethod
    def reload(cls, path=DEFAULT_SETTINGS_PATH):
        cls._config = None
        return cls.load(path)

    @classmethod
    def get(cls, *keys, default=None):
        cfg = cls.load()
        for key in keys:
            if not isinstance(cfg, dict):
                return default
            cfg = cfg.get(key)
        return cfg if cfg is not None else default
