"""
Unit tests for runtime platform settings.
"""

from edupath.settings import get_settings, update_settings, reset_settings, DEFAULT_SETTINGS


class TestSettings:

    def test_defaults(self):
        settings = get_settings()
        assert settings["defaultMaxAnalyses"] == DEFAULT_SETTINGS["defaultMaxAnalyses"]
        assert settings["systemAnnouncement"] == ""

    def test_update_known_keys(self):
        result = update_settings({"defaultMaxAnalyses": 10, "systemAnnouncement": "  Offices closed Friday  "})
        assert result["defaultMaxAnalyses"] == 10
        assert result["systemAnnouncement"] == "Offices closed Friday"

    def test_wrong_types_and_unknown_keys_ignored(self):
        update_settings({"defaultMaxAnalyses": "lots", "registrationOpen": "no", "colour": "blue"})
        settings = get_settings()
        assert settings["defaultMaxAnalyses"] == DEFAULT_SETTINGS["defaultMaxAnalyses"]
        assert settings["registrationOpen"] == DEFAULT_SETTINGS["registrationOpen"]
        assert "colour" not in settings

    def test_bool_is_not_an_int(self):
        update_settings({"defaultMaxAnalyses": True})
        assert get_settings()["defaultMaxAnalyses"] == DEFAULT_SETTINGS["defaultMaxAnalyses"]

    def test_quota_clamped(self):
        assert update_settings({"defaultMaxAnalyses": -5})["defaultMaxAnalyses"] == 0
        assert update_settings({"defaultMaxAnalyses": 10 ** 6})["defaultMaxAnalyses"] == 1000

    def test_reset(self):
        update_settings({"registrationOpen": False})
        reset_settings()
        assert get_settings()["registrationOpen"] == DEFAULT_SETTINGS["registrationOpen"]
