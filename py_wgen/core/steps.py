"""
Pipeline step definitions.

A step is one configured stage of the terrain pipeline: a generator
configuration, an optional low resolution mask and a disabled flag.
Configurations form a closed, tagged union so a project file can be
round-tripped without any registry.
"""

from typing import Annotated, List, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Side of the square mask grid shared by the live editor and the exporter
MASK_SIZE = 64


class _Conf(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class HillsConf(_Conf):
    """Random paraboloid hills."""

    type: Literal["Hills"] = "Hills"
    count: int = Field(600, ge=1, le=5000, description="Number of hills")
    base_radius: float = Field(16.0, ge=1.0, le=255.0, description="Radius for a 200 pixels wide map")
    radius_var: float = Field(0.7, ge=0.0, le=1.0, description="Radius variation")
    height: float = Field(0.3, ge=0.0, description="Height of a hill")


class FbmConf(_Conf):
    """Fractional brownian motion noise."""

    type: Literal["Fbm"] = "Fbm"
    mulx: float = Field(2.2, ge=0.0, le=100.0, description="Horizontal frequency")
    muly: float = Field(2.2, ge=0.0, le=100.0, description="Vertical frequency")
    addx: float = Field(0.0, ge=0.0, le=200.0, description="Horizontal offset")
    addy: float = Field(0.0, ge=0.0, le=200.0, description="Vertical offset")
    octaves: float = Field(6.0, ge=1.0, le=32.0, description="Octave count, fractional part allowed")
    delta: float = Field(0.0, description="Constant added to every cell")
    scale: float = Field(2.05, ge=0.01, le=10.0, description="Output scale")


class MidPointConf(_Conf):
    """Diamond-square midpoint displacement."""

    type: Literal["MidPoint"] = "MidPoint"
    roughness: float = Field(0.7, ge=0.01, le=1.0)


class NormalizeConf(_Conf):
    """Linear rescale to a target range."""

    type: Literal["Normalize"] = "Normalize"
    min: float = 0.0
    max: float = 1.0


class LandMassConf(_Conf):
    """Land/water redistribution."""

    type: Literal["LandMass"] = "LandMass"
    land_proportion: float = Field(0.6, ge=0.0, le=1.0, description="Proportion of the map above water")
    water_level: float = Field(0.12, ge=0.0, le=1.0, description="Height of the water plane")
    # None selects the fixed cubic curve
    plain_factor: Optional[float] = Field(
        2.5, ge=1.0, le=4.0, description="Increase for sharper mountains and flatter plains"
    )
    shore_height: float = Field(0.05, ge=0.0, le=0.1, description="Lower underwater land by this value")


class IslandConf(_Conf):
    """Border falloff."""

    type: Literal["Island"] = "Island"
    coast_range: float = Field(50.0, ge=0.1, le=50.0, description="Coastal band width in % of the map")


class MudSlideConf(_Conf):
    """Local slope relaxation."""

    type: Literal["MudSlide"] = "MudSlide"
    iterations: float = Field(5.0, ge=1.0, le=10.0)
    max_erosion_alt: float = Field(0.9, ge=0.0, le=1.0)
    strength: float = Field(0.4, ge=0.0, le=1.0)
    water_level: float = Field(0.12, ge=0.0, le=1.0)


class WaterErosionConf(_Conf):
    """Particle based hydraulic erosion."""

    type: Literal["WaterErosion"] = "WaterErosion"
    drop_amount: float = Field(0.5, ge=0.1, le=1.0, description="Amount of drops simulated")
    erosion_strength: float = Field(0.1, ge=0.01, le=1.0, description="How much soil is eroded by the drop")
    evaporation: float = Field(0.05, ge=0.01, le=0.5, description="How fast the drop evaporates")
    capacity: float = Field(8.0, ge=2.0, le=32.0, description="How much sediment a drop can contain")
    min_slope: float = Field(0.05, ge=0.0, le=1.0)
    deposition: float = Field(0.1, ge=0.01, le=1.0, description="Amount of sediment deposited")
    inertia: float = Field(0.4, ge=0.01, le=0.5, description="Inertia of the drop")
    radius: int = Field(2, ge=1, le=8, description="Erosion radius in cells")


StepConf = Annotated[
    Union[
        HillsConf,
        FbmConf,
        MidPointConf,
        NormalizeConf,
        LandMassConf,
        IslandConf,
        MudSlideConf,
        WaterErosionConf,
    ],
    Field(discriminator="type"),
]


class Step(BaseModel):
    """One configured stage of the pipeline."""

    model_config = ConfigDict(frozen=True)

    disabled: bool = False
    # row-major MASK_SIZE x MASK_SIZE weights in [0, 1]
    mask: Optional[List[float]] = None
    conf: StepConf = Field(default_factory=NormalizeConf)

    @field_validator("mask")
    @classmethod
    def _check_mask(cls, mask: Optional[List[float]]) -> Optional[List[float]]:
        if mask is None:
            return mask
        if len(mask) != MASK_SIZE * MASK_SIZE:
            raise ValueError(f"mask must contain {MASK_SIZE * MASK_SIZE} values, got {len(mask)}")
        if min(mask) < 0.0 or max(mask) > 1.0:
            raise ValueError("mask values must be in [0, 1]")
        return mask

    @property
    def label(self) -> str:
        return self.conf.type

    def mask_array(self) -> Optional[np.ndarray]:
        """Return the mask as a (MASK_SIZE, MASK_SIZE) float32 array, or None."""
        if self.mask is None:
            return None
        return np.asarray(self.mask, dtype=np.float32).reshape(MASK_SIZE, MASK_SIZE)

    def __str__(self) -> str:
        return self.label


def mask_from_array(mask: np.ndarray) -> List[float]:
    """Flatten a (MASK_SIZE, MASK_SIZE) weight array into a step mask."""
    mask = np.asarray(mask, dtype=np.float32)
    if mask.shape != (MASK_SIZE, MASK_SIZE):
        raise ValueError(f"mask must be {MASK_SIZE}x{MASK_SIZE}, got {mask.shape}")
    return np.clip(mask, 0.0, 1.0).ravel().tolist()
