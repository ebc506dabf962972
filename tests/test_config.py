"""Unit tests for config.py module."""

import dataclasses

import pytest

from rq_autotune.config import PRESETS, TuningConfig, require_config


class TestTuningConfigDefaults:
    """Test default values of TuningConfig."""

    def test_spectral_defaults(self):
        """Test spectral-dimension thresholds."""
        config = TuningConfig()
        assert config.target_spectral_dimension == 4.0
        assert config.spectral_tolerance == 0.5
        assert config.critical_spectral_dimension == 1.5
        assert config.warning_spectral_dimension == 2.5
        assert config.high_spectral_dimension == 5.5
        assert config.extreme_spectral_dimension == 8.0

    def test_pid_defaults(self):
        """Test PID gains and history sizes."""
        config = TuningConfig()
        assert (config.coupling_kp, config.coupling_ki, config.coupling_kd) == (0.3, 0.05, 0.1)
        assert config.integral_limit == 5.0
        assert config.coupling_history_size == 10
        assert config.spectral_history_size == 20

    def test_spectral_band(self):
        """Test derived healthy band."""
        assert TuningConfig().spectral_band == (3.5, 4.5)

    def test_config_is_frozen(self):
        """Test that regulators cannot mutate the configuration."""
        config = TuningConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.base_coupling = 0.1


class TestTuningConfigValidation:
    """Test __post_init__ validation."""

    def test_coupling_bounds_order(self):
        """Test min <= base <= max for coupling."""
        with pytest.raises(ValueError, match="min_coupling <= base_coupling <= max_coupling"):
            TuningConfig(min_coupling=0.1, base_coupling=0.05)

    def test_zero_minimum_rejected(self):
        """Test that a zero lower bound is rejected."""
        with pytest.raises(ValueError, match="0 < min_decoherence"):
            TuningConfig(min_decoherence=0.0)

    def test_spectral_threshold_order(self):
        """Test that spectral thresholds must be ordered."""
        with pytest.raises(ValueError, match="critical <= warning < target < high < extreme"):
            TuningConfig(high_spectral_dimension=9.0)

    def test_critical_may_equal_warning(self):
        """Test that critical == warning is allowed."""
        config = TuningConfig(critical_spectral_dimension=2.5)
        assert config.critical_spectral_dimension == config.warning_spectral_dimension

    def test_cluster_threshold_order(self):
        """Test giant < emergency < extreme <= 1."""
        with pytest.raises(ValueError, match="giant < emergency < extreme"):
            TuningConfig(giant_cluster_threshold=0.6)
        with pytest.raises(ValueError, match="giant < emergency < extreme"):
            TuningConfig(extreme_cluster_threshold=1.2)

    def test_energy_fraction_order(self):
        """Test critical < warning < target energy fractions."""
        with pytest.raises(ValueError, match="critical < warning < target"):
            TuningConfig(warning_energy_fraction=0.3)

    def test_rate_out_of_range(self):
        """Test that rates outside [0, 1] are rejected."""
        with pytest.raises(ValueError, match="spectral_smoothing_alpha must lie in"):
            TuningConfig(spectral_smoothing_alpha=1.5)
        with pytest.raises(ValueError, match="exploration_probability must lie in"):
            TuningConfig(exploration_probability=-0.1)

    def test_capacity_must_be_positive(self):
        """Test that history sizes and intervals are at least 1."""
        with pytest.raises(ValueError, match="coupling_history_size must be at least 1"):
            TuningConfig(coupling_history_size=0)
        with pytest.raises(ValueError, match="tuning_interval must be at least 1"):
            TuningConfig(tuning_interval=0)

    def test_negative_warmup(self):
        """Test that negative warmup is rejected."""
        with pytest.raises(ValueError, match="warmup_steps"):
            TuningConfig(warmup_steps=-1)


class TestOverridesAndPresets:
    """Test with_overrides and the preset factories."""

    def test_with_overrides(self):
        """Test that overrides produce a new validated instance."""
        base = TuningConfig()
        tuned = base.with_overrides(tuning_interval=25, base_coupling=0.1)
        assert tuned.tuning_interval == 25
        assert tuned.base_coupling == 0.1
        assert base.tuning_interval == 100

    def test_with_overrides_validates(self):
        """Test that overrides run validation again."""
        with pytest.raises(ValueError):
            TuningConfig().with_overrides(max_coupling=0.01)

    def test_with_overrides_unknown_field(self):
        """Test that unknown field names raise TypeError."""
        with pytest.raises(TypeError, match="Unknown TuningConfig field"):
            TuningConfig().with_overrides(gravity=1.0)

    def test_presets(self):
        """Test preset-specific values."""
        assert TuningConfig.aggressive().tuning_interval == 50
        assert TuningConfig.aggressive().cluster_decoherence_boost == 5.0
        assert TuningConfig.conservative().allow_emergency_injection is False
        assert TuningConfig.conservative().spectral_compute_interval == 500
        assert TuningConfig.long_run().tuning_interval == 500
        assert TuningConfig.long_run().energy_recycling_rate == 0.7

    def test_preset_registry(self):
        """Test that every registered preset builds a valid config."""
        assert set(PRESETS) == {"default", "aggressive", "conservative", "long_run"}
        for factory in PRESETS.values():
            assert isinstance(factory(), TuningConfig)


class TestRequireConfig:
    """Test construction-time config checks."""

    def test_none_raises_value_error(self):
        """Test that a missing config is a programming error."""
        with pytest.raises(ValueError, match="requires a TuningConfig"):
            require_config(None, "Owner")

    def test_wrong_type_raises_type_error(self):
        """Test that a non-config object is rejected."""
        with pytest.raises(TypeError, match="expects a TuningConfig"):
            require_config({"base_coupling": 0.05}, "Owner")

    def test_passthrough(self):
        """Test that a valid config is returned unchanged."""
        config = TuningConfig()
        assert require_config(config, "Owner") is config
