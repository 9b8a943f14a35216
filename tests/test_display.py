# Copyright 2024-2026 Hewlett Packard Enterprise Development LP
# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for usage text and the run configuration table.
"""


class TestUsage:
    """Tests for the environment-variable usage listing."""

    def test_header(self, tbe):
        lines = tbe.usage_lines()
        assert lines[0] == "Environment variables:"
        assert set(lines[1]) == {"="}

    def test_every_variable_listed(self, tbe):
        text = "\n".join(tbe.usage_lines())
        for name in ["USE_HIP_CALL", "USE_MEMSET", "USE_SINGLE_SYNC", "USE_INTERACTIVE",
                     "COMBINE_TIMING", "SHOW_ADDR", "OUTPUT_TO_CSV", "BYTE_OFFSET",
                     "NUM_WARMUPS", "NUM_ITERATIONS", "SAMPLING_FACTOR",
                     "NUM_CPU_PER_LINK", "FILL_PATTERN"]:
            assert f" {name}" in text

    def test_display_usage_prints(self, tbe, capsys):
        tbe.display_usage()
        out = capsys.readouterr().out
        assert out.startswith("Environment variables:\n")
        assert "FILL_PATTERN=STR" in out


class TestRenderEnvVars:
    """Tests for the human-readable configuration table."""

    def _row(self, lines, name):
        matches = [line for line in lines if line.startswith(name + " ")]
        assert len(matches) == 1, f"expected one {name} row"
        return matches[0]

    def test_defaults(self, tbe, default_snapshot):
        lines = tbe.render_env_vars(default_snapshot)
        assert lines[0] == "Run configuration"
        assert self._row(lines, "NUM_WARMUPS") == \
            f"{'NUM_WARMUPS':<20} = {3:>12} : Running 3 warmup iteration(s) per topology"
        assert "custom kernels" in self._row(lines, "USE_HIP_CALL")
        assert "memcopy" in self._row(lines, "USE_MEMSET")
        assert "(unspecified)" in self._row(lines, "FILL_PATTERN")
        assert "Pseudo-random: (Element i = i modulo 383 + 31)" in self._row(lines, "FILL_PATTERN")

    def test_flags_rendered_as_integers(self, tbe):
        s = tbe.load_config({"SHOW_ADDR": "1"})
        row = self._row(tbe.render_env_vars(s), "SHOW_ADDR")
        assert f"{1:>12} : Displaying src/dst mem addresses" in row

    def test_sampling_factor_shown(self, tbe):
        s = tbe.load_config({"SAMPLING_FACTOR": "4"})
        assert "Adding 4 sample(s)" in self._row(tbe.render_env_vars(s), "SAMPLING_FACTOR")

    def test_fill_pattern_shown(self, tbe):
        s = tbe.load_config({"FILL_PATTERN": "DEADBEEF"})
        row = self._row(tbe.render_env_vars(s), "FILL_PATTERN")
        assert "(specified)" in row
        assert "Pattern: DEADBEEF" in row

    def test_empty_fill_pattern_falls_back(self, tbe):
        s = tbe.load_config({"FILL_PATTERN": ""})
        row = self._row(tbe.render_env_vars(s), "FILL_PATTERN")
        assert "(specified)" in row
        assert "Pseudo-random" in row

    def test_sdma_hidden_by_default(self, tbe, default_snapshot):
        lines = tbe.render_env_vars(default_snapshot)
        assert not any(line.startswith("HSA_ENABLE_SDMA") for line in lines)

    def test_sdma_blit_kernels(self, tbe):
        s = tbe.load_config({"USE_HIP_CALL": "1", "HSA_ENABLE_SDMA": "0"})
        row = self._row(tbe.render_env_vars(s), "HSA_ENABLE_SDMA")
        assert "Using blit kernels for hipMemcpy" in row

    def test_sdma_dma_engines_when_unset(self, tbe):
        s = tbe.load_config({"USE_HIP_CALL": "1"})
        row = self._row(tbe.render_env_vars(s), "HSA_ENABLE_SDMA")
        assert "(unset)" in row
        assert "Using DMA copy engines" in row

    def test_sdma_hidden_for_memset(self, tbe):
        s = tbe.load_config({"USE_HIP_CALL": "1", "USE_MEMSET": "1"})
        assert not any(line.startswith("HSA_ENABLE_SDMA") for line in tbe.render_env_vars(s))

    def test_csv_mode_suppresses_table(self, tbe, capsys):
        s = tbe.load_config({"OUTPUT_TO_CSV": "1"})
        assert tbe.render_env_vars(s) == []
        tbe.display_env_vars(s)
        assert capsys.readouterr().out == ""

    def test_rendering_does_not_mutate(self, tbe):
        s = tbe.load_config({"FILL_PATTERN": "AB", "USE_HIP_CALL": "1"})
        before = tbe.snapshot_to_dict(s)
        tbe.render_env_vars(s)
        assert tbe.snapshot_to_dict(s) == before
