"""
rose.py — deterministic rose (rhodonea) curve generator
--------------------------------------------------------
Maps a random seed and a 5-color palette to an ordered set of colored path
segments. All math is integer fixed-point with unit SCALE so the same seed
draws the same rose on every interpreter and platform.
"""

import math
import re
from dataclasses import dataclass, field
from typing import List, Tuple

SCALE = 10 ** 16
PI = 31415926535897932  # floor(pi * SCALE)
TWO_PI = 2 * PI
HALF_PI = PI // 2

CANVAS = 500
RADIUS_PX = 230
PALETTE_SIZE = 5
TAYLOR_TERMS = 14

HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


@dataclass(frozen=True)
class RoseParams:
    samples: int = 1000
    scale: int = SCALE
    petals: int = 20
    ratio: int = 2
    angle: int = 60


@dataclass
class RoseSegment:
    points: List[Tuple[int, int]]
    color: str


@dataclass
class RosePath:
    """Canvas coordinates are in hundredths of a pixel."""
    size: int
    center: Tuple[int, int]
    background: str
    numerator: int
    denominator: int
    rotation: int
    segments: List[RoseSegment] = field(default_factory=list)

    @property
    def points(self) -> List[Tuple[int, int]]:
        pts = []
        for i, seg in enumerate(self.segments):
            pts.extend(seg.points if i == 0 else seg.points[1:])
        return pts


def _sin_reduced(x: int) -> int:
    # Taylor series, valid for 0 <= x <= HALF_PI
    x2 = x * x // SCALE
    term = x
    total = x
    for n in range(1, 2 * TAYLOR_TERMS, 2):
        term = -(term * x2 // SCALE) // ((n + 1) * (n + 2))
        total += term
    return total


def fp_sin(theta: int) -> int:
    """sin() of a fixed-point angle, result scaled by SCALE."""
    theta %= TWO_PI
    sign = 1
    if theta >= PI:
        theta -= PI
        sign = -1
    if theta > HALF_PI:
        theta = PI - theta
    return sign * _sin_reduced(theta)


def fp_cos(theta: int) -> int:
    return fp_sin(theta + HALF_PI)


def degrees(deg: int) -> int:
    return deg * PI // 180


def validate_palette(palette) -> List[str]:
    colors = list(palette)
    if len(colors) != PALETTE_SIZE:
        raise ValueError(f"Palette must have exactly {PALETTE_SIZE} colors, got {len(colors)}")
    for color in colors:
        if not isinstance(color, str) or not HEX_COLOR.match(color):
            raise ValueError(f"Invalid palette color: {color!r}")
    return colors


def derive_shape(seed: int, params: RoseParams) -> Tuple[int, int, int, int]:
    """Returns (numerator, denominator, rotation_degrees, color_offset)."""
    n = seed % params.petals + 1
    rest = seed // params.petals
    d = rest % params.ratio + 1
    rest //= params.ratio
    rotation = rest % params.angle
    rest //= params.angle
    color_offset = rest % PALETTE_SIZE
    g = math.gcd(n, d)
    return n // g, d // g, rotation, color_offset


def _to_canvas(value: int, scale: int) -> int:
    center = CANVAS * 100 // 2
    return center + value * RADIUS_PX * 100 // scale


def sample_curve(seed: int, params: RoseParams = RoseParams()) -> List[Tuple[int, int]]:
    n, d, rotation, _ = derive_shape(seed, params)
    rot = degrees(rotation)
    span = TWO_PI * d
    points = []
    for i in range(params.samples):
        theta = i * span // params.samples
        # r(theta) = scale * cos(k * theta), k = n / d
        r = params.scale * fp_cos(n * theta // d) // SCALE
        x = r * fp_cos(theta + rot) // SCALE
        y = r * fp_sin(theta + rot) // SCALE
        points.append((_to_canvas(x, params.scale), _to_canvas(y, params.scale)))
    return points


def generate_rose(seed: int, palette, background: str,
                  params: RoseParams = RoseParams()) -> RosePath:
    if seed <= 0:
        raise ValueError("Seed must be a positive integer")
    colors = validate_palette(palette)
    if not HEX_COLOR.match(background):
        raise ValueError(f"Invalid background color: {background!r}")

    n, d, rotation, color_offset = derive_shape(seed, params)
    points = sample_curve(seed, params)
    # close the curve so the last segment meets the first point
    points.append(points[0])

    per_segment = params.samples // params.petals
    segments = []
    for j in range(params.petals):
        start = j * per_segment
        end = params.samples if j == params.petals - 1 else start + per_segment
        color = colors[(color_offset + j) % PALETTE_SIZE]
        segments.append(RoseSegment(points=points[start:end + 1], color=color))

    center = CANVAS * 100 // 2
    return RosePath(
        size=CANVAS,
        center=(center, center),
        background=background,
        numerator=n,
        denominator=d,
        rotation=rotation,
        segments=segments,
    )
