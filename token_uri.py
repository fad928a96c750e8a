"""
token_uri.py — self-contained token metadata encoding
------------------------------------------------------
Renders a RosePath as SVG and packs it, together with the token metadata,
into a single data: URI that needs no external fetch to resolve.
"""

import base64
import json
from typing import Tuple

import svgwrite

from rose import RosePath

SVG_URI_PREFIX = "data:image/svg+xml;base64,"
JSON_URI_PREFIX = "data:application/json;base64,"

TOKEN_NAME = "Rose"
TOKEN_DESCRIPTION = "A rose curve drawn from verifiable randomness."


def _fmt(v: int) -> str:
    # hundredths of a pixel -> "123.45"
    whole, frac = divmod(abs(v), 100)
    sign = "-" if v < 0 else ""
    return f"{sign}{whole}.{frac:02d}"


def render_svg(rose_path: RosePath) -> str:
    size = rose_path.size
    dwg = svgwrite.Drawing(size=(size, size), viewBox=f"0 0 {size} {size}")
    dwg.add(dwg.rect(insert=(0, 0), size=("100%", "100%"), fill=rose_path.background))

    cx, cy = (_fmt(c) for c in rose_path.center)
    for segment in rose_path.segments:
        path = dwg.path(d=f"M{cx},{cy}", fill=segment.color, stroke=segment.color,
                        stroke_width=1, fill_opacity=0.8)
        for x, y in segment.points:
            path.push(f"L{_fmt(x)},{_fmt(y)}")
        path.push("Z")
        dwg.add(path)
    return dwg.tostring()


def svg_to_image_uri(svg: str) -> str:
    b64 = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"{SVG_URI_PREFIX}{b64}"


def format_token_uri(image_uri: str, token_id: int, attributes=None) -> str:
    metadata = {
        "name": f"{TOKEN_NAME} #{token_id}",
        "description": TOKEN_DESCRIPTION,
        "id": token_id,
        "attributes": attributes or [],
        "image": image_uri,
    }
    payload = json.dumps(metadata, separators=(",", ":"))
    b64 = base64.b64encode(payload.encode("utf-8")).decode("ascii")
    return f"{JSON_URI_PREFIX}{b64}"


def rose_attributes(rose_path: RosePath):
    return [
        {"trait_type": "numerator", "value": rose_path.numerator},
        {"trait_type": "denominator", "value": rose_path.denominator},
        {"trait_type": "rotation", "value": rose_path.rotation},
    ]


def build_token_uri(rose_path: RosePath, token_id: int) -> str:
    image_uri = svg_to_image_uri(render_svg(rose_path))
    return format_token_uri(image_uri, token_id, rose_attributes(rose_path))


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a base64 data: URI into (mime type, raw bytes)."""
    if not uri.startswith("data:") or ";base64," not in uri:
        raise ValueError("Not a base64 data URI")
    header, b64 = uri[len("data:"):].split(";base64,", 1)
    return header, base64.b64decode(b64)
