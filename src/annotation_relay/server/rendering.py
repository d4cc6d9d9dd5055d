from __future__ import annotations

import base64
import io
from collections.abc import Sequence

from PIL import Image, ImageDraw

from annotation_relay.protocol.messages import StrokePoint


def render_strokes(
    strokes: Sequence[Sequence[StrokePoint]],
    *,
    width: int,
    height: int,
    color: tuple[int, int, int] = (0, 0, 255),
) -> Image.Image:
    """
    Rasterize reconstructed strokes onto a white canvas.

    - **strokes**: point lists in canvas coordinates
    - line width follows each point's tip size scaled by its force
    - point opacity becomes the segment's alpha
    """
    img = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    for stroke in strokes:
        prev: tuple[float, float] | None = None
        for p in stroke:
            cur = (p.location[0], p.location[1])
            w = max(1, int(round(p.size[0] * max(p.force, 0.1))))
            alpha = int(255 * min(max(p.opacity, 0.0), 1.0))
            if prev is None:
                r = w / 2
                draw.ellipse([cur[0] - r, cur[1] - r, cur[0] + r, cur[1] + r], fill=(*color, alpha))
            else:
                draw.line([prev, cur], fill=(*color, alpha), width=w)
            prev = cur

    return Image.alpha_composite(img, layer)


def render_strokes_png_b64(
    strokes: Sequence[Sequence[StrokePoint]],
    *,
    width: int,
    height: int,
) -> str:
    """PNG (base64, no data-url prefix) of :func:`render_strokes`."""
    bio = io.BytesIO()
    render_strokes(strokes, width=width, height=height).save(bio, format="PNG", optimize=True)
    return base64.b64encode(bio.getvalue()).decode("ascii")
