"""
Cut a generated icon out of its white background.

Usage:
    python scripts/remove_background.py icon.png icon_cutout.png
    python scripts/remove_background.py --style Outlined icon.png icon_cutout.png
    python scripts/remove_background.py --fill-tolerance 30 icon.jpg icon_cutout.png
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from cutout.application.remove_background_use_case import RemoveBackgroundUseCase
from cutout.domain.background_remover import (
    EDGE_ALPHA_FLOOR,
    FILL_TOLERANCE,
    OUTLINE_TOLERANCE,
    RemovalOptions,
)
from cutout.domain.errors import CutoutError
from cutout.domain.image import IconStyle
from cutout.infrastructure.white_background_remover import WhiteBackgroundRemover


def main() -> int:
    parser = argparse.ArgumentParser(description="Remove the white background from an icon image")
    parser.add_argument("input", help="Input image path")
    parser.add_argument("output", help="Output PNG path")
    parser.add_argument(
        "--style",
        default=IconStyle.FLAT.value,
        help=f"Icon style, one of: {', '.join(s.value for s in IconStyle)} (default: Flat)",
    )
    parser.add_argument("--outline-tolerance", type=int, default=OUTLINE_TOLERANCE,
                        help=f"Near-white tolerance for Outlined icons (default: {OUTLINE_TOLERANCE})")
    parser.add_argument("--fill-tolerance", type=int, default=FILL_TOLERANCE,
                        help=f"Per-channel flood fill tolerance (default: {FILL_TOLERANCE})")
    parser.add_argument("--edge-alpha-floor", type=float, default=EDGE_ALPHA_FLOOR,
                        help=f"Edge coverage at or below which pixels are dropped (default: {EDGE_ALPHA_FLOOR})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log phase statistics")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    input_path = Path(args.input)
    output_path = Path(args.output).with_suffix(".png")
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    use_case = RemoveBackgroundUseCase(WhiteBackgroundRemover())
    try:
        options = RemovalOptions(
            outline_tolerance=args.outline_tolerance,
            fill_tolerance=args.fill_tolerance,
            edge_alpha_floor=args.edge_alpha_floor,
        )
        output_png = use_case.execute(input_path.read_bytes(), args.style, options)
    except CutoutError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(output_png)
    print(f"Output: {output_path} ({len(output_png) / 1024:.1f} KB)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
