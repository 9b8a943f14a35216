#!/usr/bin/env python3
# Copyright 2024-2026 Hewlett Packard Enterprise Development LP
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# ───────────────────────────────────────────────────────────────────────
from __future__ import annotations

import argparse
import dataclasses
import enum
import json
import logging
import os
import re
import socket
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import torch
import yaml

LOGGER_NAME = "transferbench"

# ───────────────────────────────────────────────────────────────────────
# 0.  DEFAULTS & RECOGNISED VARIABLES  ─────────────────────────────────
DEFAULT_NUM_WARMUPS = 3
DEFAULT_NUM_ITERATIONS = 10
DEFAULT_SAMPLING_FACTOR = 1
DEFAULT_NUM_CPU_PER_LINK = 4

# Size of one fill cell (a 32-bit float)
FLOAT_SIZE = 4

# Pseudo-random fill used when no FILL_PATTERN is given: value[i] = i % 383 + 31
PSEUDO_RANDOM_MODULUS = 383
PSEUDO_RANDOM_OFFSET = 31

FLAG_VARS = {
    "USE_HIP_CALL": "use_hip_call",
    "USE_MEMSET": "use_memset",
    "USE_SINGLE_SYNC": "use_single_sync",
    "USE_INTERACTIVE": "use_interactive",
    "COMBINE_TIMING": "combine_timing",
    "SHOW_ADDR": "show_addr",
    "OUTPUT_TO_CSV": "output_to_csv",
}

INT_VARS = {
    "BYTE_OFFSET": ("byte_offset", 0),
    "NUM_WARMUPS": ("num_warmups", DEFAULT_NUM_WARMUPS),
    "NUM_ITERATIONS": ("num_iterations", DEFAULT_NUM_ITERATIONS),
    "SAMPLING_FACTOR": ("sampling_factor", DEFAULT_SAMPLING_FACTOR),
    "NUM_CPU_PER_LINK": ("num_cpu_per_link", DEFAULT_NUM_CPU_PER_LINK),
}

# (label, description) in the order the usage text lists them
USAGE_ENTRIES = [
    ("USE_HIP_CALL", "Use hipMemcpy/hipMemset instead of custom shader kernels for GPU-executed copies"),
    ("USE_MEMSET", "Perform a memset instead of a copy (ignores source memory)"),
    ("USE_SINGLE_SYNC", "Perform synchronization only once after all iterations instead of per iteration"),
    ("USE_INTERACTIVE", "Pause for user-input before starting transfer loop"),
    ("COMBINE_TIMING", "Combines timing with launch (potentially lower timing overhead)"),
    ("SHOW_ADDR", "Print out memory addresses for each Link"),
    ("OUTPUT_TO_CSV", "Outputs to CSV format if set"),
    ("BYTE_OFFSET", "Initial byte-offset for memory allocations.  Must be multiple of 4. Defaults to 0"),
    ("NUM_WARMUPS=W", "Perform W untimed warmup iteration(s) per test"),
    ("NUM_ITERATIONS=I", "Perform I timed iteration(s) per test"),
    ("SAMPLING_FACTOR=F", "Add F samples (when possible) between powers of 2 when auto-generating data sizes"),
    ("NUM_CPU_PER_LINK=C", "Use C threads per Link for CPU-executed copies"),
    ("FILL_PATTERN=STR", "Fill input buffer with pattern specified in hex digits (0-9,a-f,A-F).  Must be even number of digits"),
]

RECOGNISED_VARS = set(FLAG_VARS) | set(INT_VARS) | {"FILL_PATTERN", "HSA_ENABLE_SDMA"}

HEX_DIGITS = "0123456789abcdefABCDEF"

# YAML 1.1 boolean/null words, read as plain strings by yaml.BaseLoader
_YAML_SCALAR_WORDS = {
    "true": "1", "yes": "1", "on": "1",
    "false": "0", "no": "0", "off": "0",
    "null": "", "~": "",
}

# atoi(): optional leading whitespace, optional sign, then decimal digits
_ATOI_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")


# ───────────────────────────────────────────────────────────────────────
# 1.  ERRORS  ──────────────────────────────────────────────────────────
class ConfigErrorKind(enum.Enum):
    MALFORMED_INPUT = "malformed_input"
    OUT_OF_RANGE = "out_of_range"


class ConfigError(Exception):
    """Invalid run configuration.

    Raised by the loader instead of exiting; the CLI front end turns it into
    an ``[ERROR]`` line and exit code 1.
    """

    def __init__(self, kind: ConfigErrorKind, message: str, variable: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.variable = variable


# ───────────────────────────────────────────────────────────────────────
# 2.  SNAPSHOT  ────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ConfigSnapshot:
    """Validated, read-only run configuration."""

    use_hip_call: bool = False
    use_memset: bool = False
    use_single_sync: bool = False
    use_interactive: bool = False
    use_sleep: bool = False  # not read from any environment variable
    combine_timing: bool = False
    show_addr: bool = False
    output_to_csv: bool = False
    byte_offset: int = 0
    num_warmups: int = DEFAULT_NUM_WARMUPS
    num_iterations: int = DEFAULT_NUM_ITERATIONS
    sampling_factor: int = DEFAULT_SAMPLING_FACTOR
    num_cpu_per_link: int = DEFAULT_NUM_CPU_PER_LINK
    fill_pattern: bytes = b""
    fill_pattern_text: Optional[str] = None
    hsa_enable_sdma: Optional[str] = None

    @property
    def has_fill_pattern(self) -> bool:
        return len(self.fill_pattern) > 0

    @property
    def num_fill_cells(self) -> int:
        return len(self.fill_pattern) // FLOAT_SIZE


# ───────────────────────────────────────────────────────────────────────
# 3.  PARSING  ─────────────────────────────────────────────────────────
def parse_int(text: str) -> int:
    """Best-effort integer parse with C ``atoi`` semantics.

    Leading whitespace and an optional sign are accepted, parsing stops at the
    first non-digit, and text without leading digits yields 0.
    """
    m = _ATOI_RE.match(text)
    if not m:
        return 0
    return int(m.group(1))


def _get_env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None:
        return default
    return parse_int(value)


def decode_fill_pattern(pattern: Optional[str]) -> bytes:
    """Decode a hex FILL_PATTERN into whole 4-byte cells.

    The pattern is repeated 1, 2 or 4 times (for lengths of 0, 4 or anything
    else modulo 8 hex digits) so the decoded buffer is a multiple of
    FLOAT_SIZE bytes. ``None`` decodes to an empty buffer.
    """
    if pattern is None:
        return b""

    pattern_len = len(pattern)
    if pattern_len % 2:
        raise ConfigError(ConfigErrorKind.MALFORMED_INPUT,
                          "FILL_PATTERN must contain an even number of hex digits",
                          "FILL_PATTERN")

    rem = pattern_len % 8
    if rem == 0:
        copies = 1
    elif rem == 4:
        copies = 2
    else:
        copies = 4

    raw = bytearray(pattern_len // 2)
    for i in range(0, pattern_len, 2):
        hi, lo = pattern[i], pattern[i + 1]
        for ch in (hi, lo):
            if ch not in HEX_DIGITS:
                raise ConfigError(ConfigErrorKind.MALFORMED_INPUT,
                                  f"FILL_PATTERN must contain an even number of hex digits (0-9/a-f/A-F).  (not {ch})",
                                  "FILL_PATTERN")
        raw[i // 2] = (int(hi, 16) << 4) | int(lo, 16)

    return bytes(raw) * copies


def _validate(values: Dict[str, Any]) -> None:
    # First violation wins; checked in this order.
    if values["byte_offset"] % FLOAT_SIZE:
        raise ConfigError(ConfigErrorKind.OUT_OF_RANGE,
                          f"BYTE_OFFSET must be set to multiple of {FLOAT_SIZE}", "BYTE_OFFSET")
    if values["num_warmups"] < 0:
        raise ConfigError(ConfigErrorKind.OUT_OF_RANGE,
                          "NUM_WARMUPS must be set to a non-negative number", "NUM_WARMUPS")
    if values["num_iterations"] <= 0:
        raise ConfigError(ConfigErrorKind.OUT_OF_RANGE,
                          "NUM_ITERATIONS must be set to a positive number", "NUM_ITERATIONS")
    if values["sampling_factor"] < 1:
        raise ConfigError(ConfigErrorKind.OUT_OF_RANGE,
                          "SAMPLING_FACTOR must be greater or equal to 1", "SAMPLING_FACTOR")
    if values["num_cpu_per_link"] < 1:
        raise ConfigError(ConfigErrorKind.OUT_OF_RANGE,
                          "NUM_CPU_PER_LINK must be greater or equal to 1", "NUM_CPU_PER_LINK")


def load_config(environ: Optional[Mapping[str, str]] = None, log=None) -> ConfigSnapshot:
    """Build a ConfigSnapshot from an environment mapping (``os.environ`` by default).

    Absent variables take their defaults. Present but invalid values raise
    ConfigError; no partially validated snapshot is ever returned.
    """
    if environ is None:
        environ = os.environ
    log = log or logging.getLogger(LOGGER_NAME)

    values: Dict[str, Any] = {}
    for var, field in FLAG_VARS.items():
        values[field] = bool(_get_env_int(environ, var, 0))
    for var, (field, default) in INT_VARS.items():
        values[field] = _get_env_int(environ, var, default)

    pattern = environ.get("FILL_PATTERN")
    values["fill_pattern"] = decode_fill_pattern(pattern)
    values["fill_pattern_text"] = pattern
    if pattern is not None:
        log.debug(f"FILL_PATTERN '{pattern}' decoded to {len(values['fill_pattern'])} byte(s)")

    _validate(values)

    values["hsa_enable_sdma"] = environ.get("HSA_ENABLE_SDMA")
    snapshot = ConfigSnapshot(**values)
    log.debug(f"Loaded run configuration: {snapshot}")
    return snapshot


# ───────────────────────────────────────────────────────────────────────
# 4.  SOURCE FILL  ─────────────────────────────────────────────────────
def pattern_tensor(snapshot: ConfigSnapshot) -> torch.Tensor:
    """Return the fill pattern as float32 cells (native byte order)."""
    if not snapshot.has_fill_pattern:
        return torch.empty(0, dtype=torch.float32)
    return torch.frombuffer(bytearray(snapshot.fill_pattern), dtype=torch.float32)


def fill_source_tensor(snapshot: ConfigSnapshot, num_floats: int,
                       device: Union[str, torch.device] = "cpu") -> torch.Tensor:
    """Source data for a transfer: the tiled fill pattern, or the pseudo-random sequence."""
    if num_floats < 0:
        raise ValueError(f"num_floats must be non-negative, got {num_floats}")

    if snapshot.has_fill_pattern:
        cells = pattern_tensor(snapshot)
        reps = -(-num_floats // cells.numel())
        data = cells.repeat(reps)[:num_floats]
    else:
        idx = torch.arange(num_floats, dtype=torch.int64)
        data = (idx % PSEUDO_RANDOM_MODULUS + PSEUDO_RANDOM_OFFSET).to(torch.float32)
    return data.to(device)


# ───────────────────────────────────────────────────────────────────────
# 5.  DISPLAY  ─────────────────────────────────────────────────────────
def usage_lines() -> List[str]:
    lines = ["Environment variables:", "======================"]
    for label, desc in USAGE_ENTRIES:
        lines.append(f" {label:<18} - {desc}")
    return lines


def display_usage():
    """Print the recognised environment variables."""
    for line in usage_lines():
        print(line)


def _row(name: str, value: Any, desc: str) -> str:
    if isinstance(value, bool):
        value = int(value)
    return f"{name:<20} = {value:>12} : {desc}"


def render_env_vars(snapshot: ConfigSnapshot) -> List[str]:
    """Format the run configuration table. Empty when CSV output is selected."""
    if snapshot.output_to_csv:
        return []

    s = snapshot
    lines = ["Run configuration", "=" * 53]
    lines.append(_row("USE_HIP_CALL", s.use_hip_call,
                      f"Using {'HIP functions' if s.use_hip_call else 'custom kernels'} for GPU-executed copies"))
    lines.append(_row("USE_MEMSET", s.use_memset,
                      f"Performing {'memset' if s.use_memset else 'memcopy'}"))
    if s.use_hip_call and not s.use_memset:
        sdma = s.hsa_enable_sdma
        lines.append(_row("HSA_ENABLE_SDMA", "(unset)" if sdma is None else sdma,
                          "Using blit kernels for hipMemcpy" if sdma == "0" else "Using DMA copy engines"))
    lines.append(_row("USE_SINGLE_SYNC", s.use_single_sync,
                      "Synchronizing only once, after all iterations" if s.use_single_sync
                      else "Synchronizing per iteration"))
    lines.append(_row("USE_INTERACTIVE", s.use_interactive,
                      f"Running in {'interactive' if s.use_interactive else 'non-interactive'} mode"))
    lines.append(_row("COMBINE_TIMING", s.combine_timing,
                      "Using combined timing+launch" if s.combine_timing else "Using separate timing / launch"))
    lines.append(_row("SHOW_ADDR", s.show_addr,
                      "Displaying src/dst mem addresses" if s.show_addr
                      else "Not displaying src/dst mem addresses"))
    lines.append(_row("OUTPUT_TO_CSV", s.output_to_csv, "Output to console"))
    lines.append(_row("BYTE_OFFSET", s.byte_offset, f"Using byte offset of {s.byte_offset}"))
    lines.append(_row("NUM_WARMUPS", s.num_warmups,
                      f"Running {s.num_warmups} warmup iteration(s) per topology"))
    lines.append(_row("NUM_ITERATIONS", s.num_iterations,
                      f"Running {s.num_iterations} timed iteration(s) per topology"))
    lines.append(_row("SAMPLING_FACTOR", s.sampling_factor,
                      f"Adding {s.sampling_factor} sample(s) between powers of 2"))
    lines.append(_row("NUM_CPU_PER_LINK", s.num_cpu_per_link,
                      f"Using {s.num_cpu_per_link} CPU thread(s) per CPU-based-copy Link"))
    if s.has_fill_pattern:
        fill_desc = f"Pattern: {s.fill_pattern_text}"
    else:
        fill_desc = f"Pseudo-random: (Element i = i modulo {PSEUDO_RANDOM_MODULUS} + {PSEUDO_RANDOM_OFFSET})"
    lines.append(_row("FILL_PATTERN",
                      "(specified)" if s.fill_pattern_text is not None else "(unspecified)",
                      fill_desc))
    return lines


def display_env_vars(snapshot: ConfigSnapshot):
    for line in render_env_vars(snapshot):
        print(line)


# ───────────────────────────────────────────────────────────────────────
# 6.  CONFIG FILE & EXPORT  ────────────────────────────────────────────
def load_env_file(config_path, log=None) -> Dict[str, str]:
    """Load environment-variable overrides from a YAML file.

    Accepts either a top-level mapping or one nested under ``env:``. Scalars
    keep the text as written (``00000000`` stays a hex pattern, not an octal
    int); YAML boolean words become "1"/"0".
    """
    log = log or logging.getLogger(LOGGER_NAME)
    try:
        with open(config_path, 'r') as f:
            config = yaml.load(f, Loader=yaml.BaseLoader)
    except FileNotFoundError:
        raise ConfigError(ConfigErrorKind.MALFORMED_INPUT, f"Config file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(ConfigErrorKind.MALFORMED_INPUT, f"Error parsing YAML config: {e}") from e

    if config is None:
        return {}
    if isinstance(config, dict) and "env" in config:
        for key in config:
            if key != "env":
                log.warning(f"Ignoring top-level key '{key}' outside 'env:' in {config_path}")
        config = config["env"] or {}
    if not isinstance(config, dict):
        raise ConfigError(ConfigErrorKind.MALFORMED_INPUT,
                          f"Config file {config_path} must contain a mapping of environment variables")

    env = {}
    for name, value in config.items():
        if name not in RECOGNISED_VARS:
            log.warning(f"Ignoring unknown variable '{name}' in {config_path}")
            continue
        if not isinstance(value, str):
            raise ConfigError(ConfigErrorKind.MALFORMED_INPUT,
                              f"{name} in {config_path} must be a scalar value", name)
        env[name] = _YAML_SCALAR_WORDS.get(value.lower(), value)
    return env


def snapshot_to_dict(snapshot: ConfigSnapshot) -> Dict[str, Any]:
    data = dataclasses.asdict(snapshot)
    data["fill_pattern"] = snapshot.fill_pattern.hex().upper()
    return data


def export_json(snapshot: ConfigSnapshot, output_path, log, config_file=None) -> Optional[Path]:
    """Write the run configuration to a JSON file. Returns the path, or None on failure."""
    export_data = {
        "metadata": {
            "timestamp": datetime.now().isoformat(),
            "hostname": socket.gethostname().split('.', 1)[0],
            "torch_version": torch.__version__,
            "config_file": config_file,
        },
        "config": snapshot_to_dict(snapshot),
    }
    output_path = Path(output_path)
    try:
        with open(output_path, 'w') as f:
            json.dump(export_data, f, indent=2, default=str)
    except OSError as e:
        log.error(f"Failed to export JSON: {e}")
        return None
    log.info(f"JSON configuration exported to: {output_path}")
    return output_path


# ───────────────────────────────────────────────────────────────────────
# 7.  CLI & LOGGING  ───────────────────────────────────────────────────
def build_parser():
    p = argparse.ArgumentParser("TRANSFERBENCH-ENV", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p.add_argument("--usage", action="store_true", help="List the recognised environment variables and exit")
    p.add_argument("--config", type=str, help="YAML file of environment variables (process environment takes precedence)")
    p.add_argument("--json-output", type=str, help="Path to output JSON file with the run configuration")
    p.add_argument("--no-log", action="store_true")
    p.add_argument("--log-file", type=str)
    p.add_argument("--verbose", action="store_true")
    return p


def init_logging(a):
    """Set up the ``transferbench`` logger. Returns logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if a.no_log:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    handlers = [logging.StreamHandler(sys.stdout)]
    if a.log_file:
        handlers.append(logging.FileHandler(a.log_file))

    logger.setLevel(logging.DEBUG if a.verbose else logging.INFO)
    for handler in handlers:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S"))
        logger.addHandler(handler)

    # Prevent propagation to root logger to avoid duplicate output
    logger.propagate = False
    return logger


# ───────────────────────────────────────────────────────────────────────
# 8.  MAIN  ────────────────────────────────────────────────────────────
def main(argv=None, environ: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.usage:
        display_usage()
        return 0

    log = init_logging(args)
    if environ is None:
        environ = os.environ

    try:
        if args.config:
            merged = load_env_file(args.config, log)
            merged.update(environ)
            environ = merged
            log.debug(f"Applied environment from config file: {args.config}")
        snapshot = load_config(environ, log)
    except ConfigError as e:
        print(f"[ERROR] {e}")
        log.debug(f"Configuration rejected ({e.kind.value}, variable={e.variable})")
        return 1

    display_env_vars(snapshot)

    if args.json_output:
        if export_json(snapshot, args.json_output, log, config_file=args.config) is None:
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
