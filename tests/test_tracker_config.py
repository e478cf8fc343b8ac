"""
Tests for Object Tracker Configuration
=======================================
pytest tests/test_tracker_config.py -v
"""

import math

import pytest
import sys, os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from object_tracker import TrackerConfig, load_config


class TestTrackerConfig:
    def test_defaults(self):
        c = TrackerConfig()
        assert c.frame_id == "map"
        assert c.project_objects is False
        assert c.default_distance == 1.0
        assert c.angle_variance == pytest.approx(math.radians(5.0))
        assert c.min_height == -999.9
        assert c.max_height == 999.9
        assert c.verification_services == []
        c.validate()

    def test_services_from_comma_string(self):
        c = TrackerConfig.from_dict({"verification_services": "a, b,,c"})
        assert c.verification_services == ["a", "b", "c"]

    def test_services_from_list(self):
        c = TrackerConfig.from_dict({"verification_services": ["heat"]})
        assert c.verification_services == ["heat"]

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="frame"):
            TrackerConfig.from_dict({"frame": "odom"})

    @pytest.mark.parametrize("params", [
        {"default_distance": 0.0},
        {"distance_variance": -1.0},
        {"min_height": 2.0, "max_height": 1.0},
        {"gate_threshold": 0.0},
        {"transform_timeout": -0.5},
    ])
    def test_invalid_values(self, params):
        with pytest.raises(ValueError):
            TrackerConfig.from_dict(params)

    def test_dict_roundtrip(self):
        c = TrackerConfig(frame_id="odom", verification_services=["v"])
        assert TrackerConfig.from_dict(c.to_dict()) == c


class TestLoadConfig:
    def test_section(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text(
            "object_tracker:\n"
            "  frame_id: world\n"
            "  project_objects: true\n"
            "  min_height: -0.5\n"
            "  verification_services: victim_verification,heat_verification\n")
        c = load_config(str(path))
        assert c.frame_id == "world"
        assert c.project_objects is True
        assert c.min_height == -0.5
        assert c.verification_services == ["victim_verification", "heat_verification"]

    def test_top_level(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text("default_distance: 2.5\n")
        assert load_config(str(path)).default_distance == 2.5

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == TrackerConfig()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config(str(path))
