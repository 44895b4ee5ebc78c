"""
EduPath Consult — Platform Settings

Runtime-adjustable settings that admins can change without a restart.

Architecture:
  - DEFAULT_SETTINGS: base configuration with env var overrides
  - _active_settings: mutable runtime state, updated via the admin API
  - get_settings() / update_settings(): accessors with type + range checks
  - reset_settings(): back to defaults (used in testing)

Every module that needs a setting calls get_settings(). No module stores a
stale copy.
"""

import copy as _copy

from edupath.config import DEFAULT_MAX_ANALYSES, REGISTRATION_OPEN

# ============================================================
# DEFAULT SETTINGS
# ============================================================
DEFAULT_SETTINGS = {
    # ── QUOTAS ──
    "defaultMaxAnalyses": DEFAULT_MAX_ANALYSES,

    # ── REGISTRATION ──
    "registrationOpen": REGISTRATION_OPEN,

    # ── BANNER ──
    "systemAnnouncement": "",
}

MAX_ANALYSES_CEILING = 1000
MAX_ANNOUNCEMENT_CHARS = 500


# ============================================================
# RUNTIME STATE — mutable, updated via API
# ============================================================
_active_settings = _copy.deepcopy(DEFAULT_SETTINGS)


def get_settings() -> dict:
    """Get the active platform settings."""
    return _active_settings


def update_settings(updates: dict) -> dict:
    """Update specific settings. Unknown keys and wrong types are ignored.
    Returns the full updated settings."""
    for key, value in updates.items():
        if key not in _active_settings:
            continue
        expected_type = type(DEFAULT_SETTINGS[key])
        if expected_type is bool:
            if isinstance(value, bool):
                _active_settings[key] = value
        elif expected_type is int:
            if isinstance(value, int) and not isinstance(value, bool):
                _active_settings[key] = max(0, min(MAX_ANALYSES_CEILING, value))
        elif isinstance(value, str):
            _active_settings[key] = value.strip()[:MAX_ANNOUNCEMENT_CHARS]
    return _active_settings


def reset_settings():
    """Reset settings to defaults. Used in testing."""
    global _active_settings
    _active_settings = _copy.deepcopy(DEFAULT_SETTINGS)
    return _active_settings
