"""
drmscan Data Models
====================

Pydantic-based models for the two layers of drmscan:

* the image layer -- :class:`Section`, :class:`ImageDescriptor` and
  :class:`InvalidImage`, produced once per parse and immutable afterwards;
* the classification layer -- DRM types, detections and the compatibility
  assessment built on top of image signals.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

from __future__ import annotations

import enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Image layer
# ---------------------------------------------------------------------------

class Section(BaseModel):
    """One entry of the PE section table, in on-disk order.

    Attributes:
        name: Section name (up to 8 bytes, trailing NULs trimmed, may repeat).
        virtual_size: Size of the section once mapped.
        virtual_address: RVA of the first mapped byte.
        raw_data_size: Number of bytes stored in the file.
        raw_data_pointer: File offset of the stored bytes.
        characteristics: ``IMAGE_SCN_*`` bitmask.
    """
    model_config = ConfigDict(frozen=True)

    name: str = ""
    virtual_size: int = 0
    virtual_address: int = 0
    raw_data_size: int = 0
    raw_data_pointer: int = 0
    characteristics: int = 0

    @property
    def raw_end(self) -> int:
        """File offset one past the section's stored bytes."""
        return self.raw_data_pointer + self.raw_data_size

    def contains_rva(self, rva: int) -> bool:
        """Whether *rva* falls in ``[virtual_address, virtual_address + virtual_size)``."""
        return self.virtual_address <= rva < self.virtual_address + self.virtual_size


class ImageDescriptor(BaseModel):
    """Result of a successful parse of a PE/COFF image.

    Attributes:
        path: Source file path.
        bitness: 32 or 64, from the optional-header magic.
        sections: Section table in file order.
        imported_libraries: Case-folded DLL names from the import directory.
        imported_functions: Function names imported by name (not ordinal).
        overlay_size: Bytes trailing the last section's raw data (>= 0).
        file_size: Total file size in bytes.
    """
    model_config = ConfigDict(frozen=True)

    path: str
    bitness: int = 32
    sections: tuple[Section, ...] = ()
    imported_libraries: frozenset[str] = frozenset()
    imported_functions: frozenset[str] = frozenset()
    overlay_size: int = Field(default=0, ge=0)
    file_size: int = Field(default=0, ge=0)

    @property
    def is_valid(self) -> bool:
        return True

    @property
    def is_64bit(self) -> bool:
        return self.bitness == 64

    @property
    def architecture(self) -> str:
        return "64-bit" if self.is_64bit else "32-bit"

    def imports_library(self, name: str) -> bool:
        """Case-insensitive exact match against the imported DLL names."""
        return name.lower() in self.imported_libraries

    def imports_function(self, name: str) -> bool:
        """Case-insensitive exact match against the imported function names."""
        target = name.lower()
        return any(func.lower() == target for func in self.imported_functions)

    def find_section(self, name: str) -> Section | None:
        """First section whose name equals *name*, ignoring case."""
        target = name.lower()
        for section in self.sections:
            if section.name.lower() == target:
                return section
        return None


class InvalidReason(str, enum.Enum):
    """Why a file was not accepted as a PE image."""
    STRUCTURAL = "structural"
    RESOURCE = "resource"


class InvalidImage(BaseModel):
    """Outcome of a parse that did not yield an image.

    Attributes:
        path: Source file path.
        reason: Structural problem with the bytes, or the file could not be read.
        detail: Human-readable explanation.
    """
    model_config = ConfigDict(frozen=True)

    path: str
    reason: InvalidReason = InvalidReason.STRUCTURAL
    detail: str = ""

    @property
    def is_valid(self) -> bool:
        return False


ImageOutcome = Union[ImageDescriptor, InvalidImage]


# ---------------------------------------------------------------------------
# Classification layer
# ---------------------------------------------------------------------------

class DrmType(str, enum.Enum):
    """Protection schemes drmscan can recognise.

    Declaration order doubles as restrictiveness: later members win when
    picking the primary DRM of a game.
    """
    NONE = "none"
    STEAM_STUB = "steam_stub"
    STEAM_CEG = "steam_ceg"
    DENUVO = "denuvo"
    VMPROTECT = "vmprotect"
    THEMIDA = "themida"
    SECUROM = "securom"
    EPIC_ONLINE_SERVICES = "epic_online_services"
    EA_ORIGIN = "ea_origin"
    UBISOFT_CONNECT = "ubisoft_connect"
    CUSTOM = "custom"

    @property
    def rank(self) -> int:
        return list(DrmType).index(self)

    @property
    def display_name(self) -> str:
        return _DRM_DISPLAY_NAMES[self]


class DrmConfidence(enum.IntEnum):
    """How certain a detection is."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class BypassRecommendation(str, enum.Enum):
    """Route for running the game without its protection."""
    NONE = "none"
    GOLDBERG = "goldberg"
    GOLDBERG_EXPERIMENTAL = "goldberg_experimental"
    CREAM_API = "cream_api"
    MANUAL_PATCH = "manual_patch"
    NOT_POSSIBLE = "not_possible"


class PackageRecommendation(str, enum.Enum):
    """Recommended packaging approach for a whole game."""
    GOLDBERG = "goldberg"
    GOLDBERG_WITH_CONFIG = "goldberg_with_config"
    DIRECT_COPY = "direct_copy"
    MANUAL_REVIEW = "manual_review"
    NOT_PACKAGEABLE = "not_packageable"


_DRM_DISPLAY_NAMES: dict[DrmType, str] = {
    DrmType.NONE: "None",
    DrmType.STEAM_STUB: "Steam API",
    DrmType.STEAM_CEG: "Steam CEG",
    DrmType.DENUVO: "Denuvo",
    DrmType.VMPROTECT: "VMProtect",
    DrmType.THEMIDA: "Themida",
    DrmType.SECUROM: "SecuROM",
    DrmType.EPIC_ONLINE_SERVICES: "Epic Online Services",
    DrmType.EA_ORIGIN: "EA App/Origin",
    DrmType.UBISOFT_CONNECT: "Ubisoft Connect",
    DrmType.CUSTOM: "Custom DRM",
}

_BYPASS_BY_DRM: dict[DrmType, BypassRecommendation] = {
    DrmType.NONE: BypassRecommendation.NONE,
    DrmType.STEAM_STUB: BypassRecommendation.GOLDBERG,
    DrmType.STEAM_CEG: BypassRecommendation.GOLDBERG_EXPERIMENTAL,
    DrmType.DENUVO: BypassRecommendation.NOT_POSSIBLE,
    DrmType.VMPROTECT: BypassRecommendation.MANUAL_PATCH,
    DrmType.THEMIDA: BypassRecommendation.NOT_POSSIBLE,
    DrmType.SECUROM: BypassRecommendation.MANUAL_PATCH,
    DrmType.EPIC_ONLINE_SERVICES: BypassRecommendation.MANUAL_PATCH,
    DrmType.EA_ORIGIN: BypassRecommendation.NOT_POSSIBLE,
    DrmType.UBISOFT_CONNECT: BypassRecommendation.NOT_POSSIBLE,
    DrmType.CUSTOM: BypassRecommendation.MANUAL_PATCH,
}


class DetectedDrm(BaseModel):
    """A single detected protection with the evidence that triggered it."""
    type: DrmType
    evidence: str = ""
    confidence: DrmConfidence = DrmConfidence.MEDIUM

    @property
    def recommended_bypass(self) -> BypassRecommendation:
        return _BYPASS_BY_DRM.get(self.type, BypassRecommendation.MANUAL_PATCH)

    @property
    def display_name(self) -> str:
        return self.type.display_name


class DrmAnalysisResult(BaseModel):
    """Everything the detector learned about one game installation.

    The compatibility fields are only meaningful after
    :meth:`calculate_compatibility` has run.
    """
    detected: list[DetectedDrm] = Field(default_factory=list)
    steam_api_paths: list[str] = Field(default_factory=list)
    analysis_notes: list[str] = Field(default_factory=list)
    analysis_errors: list[str] = Field(default_factory=list)

    has_steamworks_integration: bool = False
    requires_launcher: bool = False
    requires_online: bool = False
    executables_analyzed: int = 0

    is_goldberg_compatible: bool = False
    compatibility_score: float = 0.0
    compatibility_reason: str = ""
    recommendation: PackageRecommendation = PackageRecommendation.GOLDBERG

    @property
    def primary_drm(self) -> DrmType:
        """Most restrictive detected type, or ``DrmType.NONE``."""
        if not self.detected:
            return DrmType.NONE
        return max(self.detected, key=lambda d: d.type.rank).type

    def has(self, drm_type: DrmType) -> bool:
        return any(d.type == drm_type for d in self.detected)

    def add_drm(
        self,
        drm_type: DrmType,
        evidence: str,
        confidence: DrmConfidence = DrmConfidence.MEDIUM,
    ) -> None:
        """Record a detection; the first evidence for a type is kept."""
        if not self.has(drm_type):
            self.detected.append(
                DetectedDrm(type=drm_type, evidence=evidence, confidence=confidence)
            )

    def calculate_compatibility(self) -> None:
        """Derive score, reason and packaging recommendation from detections.

        Blocking protections (Denuvo, Themida, EA, Ubisoft) short-circuit;
        the remaining rules adjust the score cumulatively and the result is
        clamped to ``[0, 1]``.
        """
        self.compatibility_score = 1.0
        self.is_goldberg_compatible = True
        self.compatibility_reason = ""
        self.recommendation = PackageRecommendation.GOLDBERG

        if self.has(DrmType.DENUVO):
            self._block(0.0, "Denuvo anti-tamper protection detected - not packageable")
            return

        if self.has(DrmType.VMPROTECT):
            self.compatibility_score = 0.2
            self.compatibility_reason = "VMProtect detected - unlikely to work with Goldberg"
            self.recommendation = PackageRecommendation.MANUAL_REVIEW

        if self.has(DrmType.THEMIDA):
            self._block(0.1, "Themida/WinLicense detected - unlikely to work")
            return

        if self.has(DrmType.EPIC_ONLINE_SERVICES):
            self.compatibility_score -= 0.3
            self.compatibility_reason = "Epic Online Services integration detected"

        if self.has(DrmType.EA_ORIGIN):
            self._block(0.1, "EA Origin/App required - not packageable")
            return

        if self.has(DrmType.UBISOFT_CONNECT):
            self._block(0.1, "Ubisoft Connect required - not packageable")
            return

        steam_only = all(
            d.type in (DrmType.STEAM_STUB, DrmType.STEAM_CEG) for d in self.detected
        )
        if self.has_steamworks_integration and steam_only:
            self.compatibility_score = 0.95
            self.compatibility_reason = "Standard Steamworks game - should work with Goldberg"
            self.recommendation = PackageRecommendation.GOLDBERG

        if self.has(DrmType.STEAM_CEG):
            self.compatibility_score = 0.7
            self.compatibility_reason = "Steam CEG detected - may work with Goldberg"

        if self.requires_online:
            self.compatibility_score -= 0.2
            if not self.compatibility_reason:
                self.compatibility_reason = "Game may require online connection"

        if self.requires_launcher:
            self.compatibility_score -= 0.1
            self.compatibility_reason = (
                f"{self.compatibility_reason} May require launcher bypass."
            ).strip()

        if not self.detected:
            self.compatibility_score = 1.0
            self.compatibility_reason = "No DRM detected - likely compatible"
            self.recommendation = (
                PackageRecommendation.GOLDBERG
                if self.has_steamworks_integration
                else PackageRecommendation.DIRECT_COPY
            )

        self.compatibility_score = min(max(self.compatibility_score, 0.0), 1.0)

    def _block(self, score: float, reason: str) -> None:
        self.is_goldberg_compatible = False
        self.compatibility_score = score
        self.compatibility_reason = reason
        self.recommendation = PackageRecommendation.NOT_PACKAGEABLE
