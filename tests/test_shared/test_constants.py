"""Tests for shared constants."""
from __future__ import annotations

from src.shared import constants


class TestConstants:
    def test_version(self):
        assert constants.VERSION == "1.0.0"

    def test_service_name(self):
        assert constants.CMDB_ENGINE_SERVICE_NAME == "cmdb-engine"

    def test_ci_id_range_is_six_digits(self):
        assert constants.CI_ID_PREFIX == "CI"
        assert len(str(constants.CI_ID_MIN)) == 6
        assert len(str(constants.CI_ID_MAX)) == 6
        assert constants.CI_ID_MIN < constants.CI_ID_MAX

    def test_criticality_levels_ordered_low_to_high(self):
        assert constants.CRITICALITY_LEVELS == ["Low", "Medium", "High", "Critical"]

    def test_directions(self):
        assert constants.RELATIONSHIP_DIRECTIONS == ["outgoing", "incoming", "both"]

    def test_busy_timeout(self):
        assert constants.DB_BUSY_TIMEOUT_MS == 30000
