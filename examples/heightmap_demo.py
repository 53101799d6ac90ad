#!/usr/bin/env python3
"""
Demo script showing staged heightmap generation.
"""

import sys

import numpy as np

from py_wgen.core import ExportFileType, ExportSettings, Step, WorldGenerator, export_heightmap
from py_wgen.core.steps import (
    FbmConf,
    HillsConf,
    IslandConf,
    LandMassConf,
    MidPointConf,
    MudSlideConf,
    NormalizeConf,
    WaterErosionConf,
)

PRESETS = {
    "continent": [
        Step(conf=FbmConf()),
        Step(conf=HillsConf(count=300)),
        Step(conf=NormalizeConf()),
        Step(conf=LandMassConf(land_proportion=0.5)),
        Step(conf=MudSlideConf()),
    ],
    "island": [
        Step(conf=MidPointConf(roughness=0.6)),
        Step(conf=IslandConf(coast_range=30.0)),
        Step(conf=LandMassConf(land_proportion=0.3, plain_factor=None)),
    ],
    "eroded": [
        Step(conf=HillsConf(count=600)),
        Step(conf=NormalizeConf()),
        Step(conf=WaterErosionConf(drop_amount=0.3)),
        Step(conf=NormalizeConf()),
    ],
}


def main():
    """Demonstrate heightmap generation."""
    seed = int(sys.argv[1]) if len(sys.argv) > 1 else 0xDEADBEEF
    print("py-wgen Heightmap Generation Demo")
    print("=" * 40)

    for name, steps in PRESETS.items():
        print(f"\n{name.upper()} preset:")
        print("-" * 30)
        wgen = WorldGenerator(seed, (128, 128))
        wgen.generate(steps)
        heights = wgen.get_export_map().heights

        water_level = 0.12
        land_pct = np.count_nonzero(heights >= water_level) / heights.size * 100
        lo, hi = wgen.get_min_max()
        print(f"  Steps: {', '.join(step.label for step in steps)}")
        print(f"  Land cells: {land_pct:.1f}%")
        print(f"  Height range: {lo:.3f} - {hi:.3f}")

        hist, edges = np.histogram(heights, bins=8)
        print("  Height distribution:")
        for i in range(len(hist)):
            bar = "#" * int(hist[i] / max(hist) * 20)
            print(f"    {edges[i]:6.2f}-{edges[i + 1]:6.2f}: {bar} ({hist[i]})")

    print("\nExporting the continent preset to continent_x0_y0.png ...")
    settings = ExportSettings(export_width=512, export_height=512, file_type=ExportFileType.PNG, file_pattern="continent")
    export_heightmap(seed, PRESETS["continent"], settings)
    print("Done")


if __name__ == "__main__":
    main()
