"""
Simple JSON-backed configuration.
"""
import json
import os

DEFAULTS = {
    "database_url": "sqlite:///queue.db",
    "dispatch_interval": 2.0,  # seconds between dispatcher ticks
    "wait_poll_interval": 1.0,  # seconds between result re-reads
    "wait_timeout": 30,  # seconds a producer waits for a result
    "max_concurrent": 4,
    "at_most_once": "enforced",  # or "best-effort"
    "claim_timeout": 300,  # seconds before an unfinished claim is failed
    "retention_days": 30,
    "activity_window": 60,  # seconds; worker counts as online inside this window
    "log_level": "INFO",
    "log_format": "console",
}

AT_MOST_ONCE_MODES = ("enforced", "best-effort")

CFG_ENV = "CMDQUEUE_CONFIG"
CFG_PATH = "cmdqueue_config.json"


class Config:
    def __init__(self, path=None, overrides=None):
        self.path = path or os.environ.get(CFG_ENV, CFG_PATH)
        if not os.path.exists(self.path):
            self._write(DEFAULTS)
        self._load()
        # Overrides live for this process only and are never persisted.
        self.overrides = dict(overrides or {})

    def _load(self):
        with open(self.path, "r") as f:
            self.data = json.load(f)

    def _write(self, d):
        with open(self.path, "w") as f:
            json.dump(d, f, indent=2)

    def get(self, key, default=None):
        if key in self.overrides:
            return self.overrides[key]
        return self.data.get(key, DEFAULTS.get(key, default))

    def set(self, key, val):
        if key == "at_most_once" and val not in AT_MOST_ONCE_MODES:
            raise ValueError(f"at_most_once must be one of {', '.join(AT_MOST_ONCE_MODES)}")
        self.data[key] = val
        self._write(self.data)

    def all(self):
        merged = dict(DEFAULTS)
        merged.update(self.data)
        merged.update(self.overrides)
        return merged
