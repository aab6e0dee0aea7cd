"""
ScanCore Configuration Management
==================================

Centralized configuration for drmscan using Python dataclasses and
TOML-based persistence.

The binary parsing core is deliberately configuration-free; the settings
here govern how the engine, detector and CLI interpret its signals.

References:
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[no-redef]


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "config.toml"


# ========================== Tool-Specific Configs ==========================


@dataclass(frozen=False, slots=True)
class DrmScanConfig:
    """Configuration for drmscan -- executable protection classifier.

    Thresholds used when turning raw image signals (overlay size, section
    entropy, literal matches) into findings and DRM detections.
    """

    # Signal thresholds
    large_overlay_bytes: int = 10_000_000
    high_entropy_threshold: float = 7.0

    # Game-directory scanning
    max_executables: int = 5
    compute_entropy: bool = True
    extra_patterns: list[str] = field(default_factory=list)

    # Wall-clock bound for a single inspection, in seconds
    analysis_timeout: float = 30.0


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity and log destinations."""

    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False
    debug: bool = False


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class ScanConfig:
    """Master configuration aggregating tool-specific and global settings.

    Usage:
        >>> config = ScanConfig.load()                  # from default path
        >>> config = ScanConfig.load("custom.toml")     # from custom path
        >>> print(config.drmscan.large_overlay_bytes)
        10000000
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    drmscan: DrmScanConfig = field(default_factory=DrmScanConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> ScanConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``config.toml`` in the
        project root.  Missing keys fall back to dataclass defaults.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`ScanConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            drmscan=cls._build_section(DrmScanConfig, raw.get("drmscan", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are ignored.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> ScanConfig:
    """Module-level convenience wrapper around :meth:`ScanConfig.load`.

    Caches the result so that repeated calls share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = ScanConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
