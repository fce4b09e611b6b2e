"""
mosaichash.py
=============

Renders a "stained-glass mosaic" visual hash: any input value (bytes, a hex
string or free-form text) becomes a square PNG-ready image made of a handful
of overlapping circular blobs, each region coloured from a palette derived
from the input and separated by curved outlines.

Equal inputs look alike, which makes the images handy for recognising keys,
fingerprints or commit ids at a glance. This is NOT a hash function: there is
no avalanche effect and no collision resistance. If you rely on those
properties, feed the output of a real hash (e.g. SHA-3) into it.

How it works
------------
1. The input is folded into a fixed-length byte buffer (short inputs repeat,
   long inputs collapse via XOR).
2. Two bytes per shape give curvature, angle and offset of one circle; the
   bytes after those give the palette (HSL, full saturation).
3. Density pass: every circle adds one to the overlap count of each pixel it
   covers; counts are written as grey levels (1 level per circle).
4. Each grey level is replaced by ``palette[level % len(palette)]`` with a
   small random jitter per colour.
5. Outline pass: the same circles are stroked in black or white (whichever
   contrasts with the palette), or in a colour you choose.

Small random jitter makes two renderings of the same input differ slightly.
Pass ``seed`` (or your own ``random.Random``) for reproducible output.

Quick start
-----------
>>> from mosaichash import generate
>>> img = generate("0x3fa91c0e", 256, {"shape_count": 6, "color_count": 3})
>>> img.save("hash.png")

Command line
------------
$ mosaichash 3fa91c0e --out /tmp/hash.png --size 256 --colors 4 --seed 7

License: MIT
"""

import argparse
import colorsys
import json
import logging
import math
import random
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

try:
    from PIL import Image, ImageDraw
except Exception as e:  # pragma: no cover
    raise SystemExit("This module requires Pillow. Try: pip install pillow") from e

try:
    import numpy as np
except Exception as e:  # pragma: no cover
    raise SystemExit("This module requires NumPy. Try: pip install numpy") from e


logger = logging.getLogger(__name__)

DEFAULT_SIZE = 256

# The golden angle as a fraction of the hue circle.
GOLDEN_FRACTION = 0.381966

DRAWABLE_MODES = ("RGB", "RGBA")


# ---------------------------- Errors ---------------------------------------

class MosaicHashError(Exception):
    """Base class for everything this module raises on purpose."""


class InputError(MosaicHashError, ValueError):
    """The input value cannot be turned into a byte buffer."""


class SurfaceUnavailableError(MosaicHashError, OSError):
    """No drawable surface could be obtained for the requested target."""


# ---------------------------- Utilities ------------------------------------

class Color(NamedTuple):
    r: int
    g: int
    b: int


def rng_from_seed(seed: Optional[int]) -> random.Random:
    """Return a Random instance from seed (or system)."""
    r = random.Random()
    if seed is not None:
        r.seed(int(seed))
    else:
        r.seed()
    return r


def clamp(v: float, lo: float = 0.0, hi: float = 255.0) -> float:
    return max(lo, min(hi, v))


def hsl_to_rgb(h: float, s: float, l: float) -> Color:
    """HSL in [0, 1] to 0..255 RGB, rounding halves up."""
    r, g, b = colorsys.hls_to_rgb(h, l, s)
    return Color(*(int(math.floor(c * 255 + 0.5)) for c in (r, g, b)))


# ---------------------------- Parameters -----------------------------------

@dataclass(frozen=True)
class GenerationConfig:
    shape_count: int = 6
    color_count: int = 3
    line_width: float = 0.02          # fraction of the output size
    jitter: float = 3.0
    line_color: Optional[Any] = None  # anything Pillow accepts; None = auto
    seed: Optional[int] = None        # None = fresh entropy every call


# Alternative spellings accepted in option mappings.
OPTION_ALIASES = {
    "shapeCount": "shape_count",
    "numberOfCurves": "shape_count",
    "colorCount": "color_count",
    "numberOfColors": "color_count",
    "lineWidthFraction": "line_width",
    "lineWidth": "line_width",
    "lineColor": "line_color",
}

Options = Union[None, GenerationConfig, Mapping[str, Any]]


def resolve_config(options: Options = None) -> GenerationConfig:
    """Overlay the given options onto the defaults.

    Keys may be field names or any of OPTION_ALIASES. ``None`` values count as
    "not given". Values are not range-checked: odd numbers just make odd
    pictures.
    """
    if options is None:
        return GenerationConfig()
    if isinstance(options, GenerationConfig):
        return options
    known = {f.name for f in fields(GenerationConfig)}
    overrides = {}
    for key, value in options.items():
        name = OPTION_ALIASES.get(key, key)
        if name not in known:
            logger.warning("Ignoring unknown option %r", key)
            continue
        if value is not None:
            overrides[name] = value
    return replace(GenerationConfig(), **overrides)


def buffer_length(config: GenerationConfig) -> int:
    """3 bytes per shape, 1 per colour, plus some slack."""
    return config.shape_count * 3 + config.color_count + 16


# ---------------------------- Input normalisation --------------------------

HEX_RE = re.compile(r"(0[xX])?[0-9A-Fa-f]+")

InputValue = Union[str, bytes, bytearray, memoryview, Sequence[int]]


def parse_input(value: InputValue) -> bytes:
    """Turn the raw input into bytes, before any folding.

    Strings that look like hex (optional 0x prefix) are decoded two digits at a
    time, dropping an odd trailing digit. Any other string is UTF-8 encoded.
    Everything else must be a sequence of ints in 0..255; it is read element by
    element, so a NumPy array gives its values, not its memory.
    """
    if isinstance(value, str):
        if HEX_RE.fullmatch(value):
            digits = value[2:] if value[:2].lower() == "0x" else value
            raw = bytes(int(digits[i:i + 2], 16) for i in range(0, len(digits) - 1, 2))
            if not raw:
                raise InputError(f"Hex input needs at least two digits: {value!r}")
            return raw
        raw = value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
    elif isinstance(value, int):
        raise TypeError(f"Expected bytes, hex or text, got int {value!r}")
    else:
        try:
            raw = bytes(int(v) for v in value)
        except ValueError as e:
            raise InputError(f"Byte values must be in 0..255: {e}") from e
    if not raw:
        raise InputError("Input is empty")
    return raw


def normalize_input(value: InputValue, length: int) -> bytes:
    """Fold the input into exactly ``length`` bytes.

    Byte ``i % length`` of the result is XORed with input byte ``i % n`` for
    every ``i`` below ``max(n, length)``.
    """
    raw = parse_input(value)
    result = bytearray(max(length, 0))
    if not result:
        return bytes(result)
    n = len(raw)
    for i in range(max(n, length)):
        result[i % length] ^= raw[i % n]
    return bytes(result)


# ---------------------------- Shapes ---------------------------------------

@dataclass(frozen=True)
class ShapeParams:
    curvature: int      # 0..7
    angle: float        # fraction of a full turn, [0, 1)
    delta_x: float      # roughly [-0.4, 0.4] of the output size
    delta_y: float


Jitter = Tuple[float, float, float]


def bytes_to_shape(b0: int, b1: int) -> ShapeParams:
    """Convert two bytes into the parameters of one circle."""
    return ShapeParams(
        curvature=b0 % 8,
        angle=(b0 >> 3) / 32,
        delta_x=((b1 % 16) - 7.5) / 18.75,
        delta_y=((b1 >> 4) - 7.5) / 18.75,
    )


def derive_shapes(source: bytes, count: int) -> List[ShapeParams]:
    return [bytes_to_shape(source[2 * i], source[2 * i + 1]) for i in range(count)]


def shape_geometry(shape: ShapeParams, jitter: Jitter) -> Tuple[float, float, float]:
    """Centre x, centre y and radius of a shape, in fractions of the output size."""
    curvature = shape.curvature + jitter[0] - 0.5
    radius = curvature * curvature * 0.02 + 0.8
    angle = shape.angle * 2 * math.pi
    cx = 0.5 + radius * math.sin(angle) + shape.delta_x + (jitter[1] - 0.5) / 64
    cy = 0.5 + radius * math.cos(angle) + shape.delta_y + (jitter[2] - 0.5) / 64
    return cx, cy, radius


# ---------------------------- Palette --------------------------------------

def _lightness(nibble: int) -> float:
    return 0.2 + (nibble / 16) * 0.7


def palette_hsl(count: int, data: bytes) -> List[Tuple[float, float]]:
    """(hue, lightness) pairs for a palette of ``count`` colours.

    Up to three colours, the extra hues sit a quarter to three quarters of the
    circle away from the base hue (one each way), which gives contrasting
    pairs. Beyond three, hues advance by the golden angle plus a small
    data-driven wobble so that any number of colours stays spread out.
    """
    if count <= 0:
        return []
    hue = data[0] / 256
    entries = [(hue, _lightness(data[1] % 16))]
    if count == 1:
        return entries
    if count <= 3:
        entries.append(((hue + 0.25 + ((data[1] >> 4) / 16) * 0.5) % 1.0, _lightness(data[2] % 16)))
        if count == 3:
            entries.append(((hue - 0.25 - ((data[2] >> 4) / 16) * 0.5) % 1.0, _lightness(data[3] % 16)))
        return entries
    while len(entries) < count:
        b = data[(len(entries) + 1) % len(data)]
        hue = (hue + GOLDEN_FRACTION + ((b % 16) / 16) * 0.2 - 0.1) % 1.0
        entries.append((hue, _lightness(b >> 4)))
    return entries


def create_palette(count: int, data: bytes) -> List[Color]:
    return [hsl_to_rgb(h, 1.0, l) for h, l in palette_hsl(count, data)]


def jitter_palette(palette: Sequence[Color], jitter: float, rng: random.Random) -> List[Color]:
    """Nudge every channel of every colour by up to +-2.5*jitter."""
    out = []
    for c in palette:
        out.append(Color(*(int(round(clamp(v + (rng.random() - 0.5) * jitter * 5))) for v in c)))
    return out


def determine_line_color(palette: Sequence[Color]) -> str:
    """White lines on dark palettes, black lines on light ones."""
    if not palette:
        return "white"
    # Plain RGB average; crude, but good enough to pick black or white.
    avg = sum(c.r + c.g + c.b for c in palette) / (len(palette) * 3)
    return "white" if avg < 96 else "black"


# ---------------------------- Surfaces -------------------------------------

SurfaceFactory = Callable[[int], Image.Image]


def new_surface(size: int) -> Image.Image:
    return Image.new("RGB", (size, size), color=(0, 0, 0))


def acquire_surface(
    target: Union[int, Image.Image],
    factory: Optional[SurfaceFactory] = new_surface,
) -> Tuple[Image.Image, int]:
    """Return (surface, working size) for an edge length or an existing image."""
    if isinstance(target, Image.Image):
        if target.mode not in DRAWABLE_MODES:
            raise SurfaceUnavailableError(
                f"Cannot draw colours into a {target.mode!r} image; use one of {DRAWABLE_MODES}"
            )
        return target, min(target.size)
    if isinstance(target, int) and not isinstance(target, bool):
        if factory is None:
            raise SurfaceUnavailableError("No surface factory available to create a new image")
        return factory(target), target
    raise TypeError(f"Target must be an edge length or a PIL image, got {type(target).__name__}")


def _read_pixels(surface: Image.Image, size: int) -> "np.ndarray":
    return np.asarray(surface.crop((0, 0, size, size)).convert("RGB"))


def _write_pixels(surface: Image.Image, rgb: "np.ndarray") -> None:
    patch = Image.fromarray(rgb)
    if patch.mode != surface.mode:
        patch = patch.convert(surface.mode)
    surface.paste(patch, (0, 0))


# ---------------------------- Drawing --------------------------------------

@dataclass
class GenerationContext:
    """Everything one generation call works on; never shared between calls."""
    config: GenerationConfig
    surface: Image.Image
    size: int
    rng: random.Random
    source: bytes = b""
    shapes: List[ShapeParams] = field(default_factory=list)
    jitter: List[Jitter] = field(default_factory=list)
    palette: List[Color] = field(default_factory=list)
    jittered: List[Color] = field(default_factory=list)


def draw_density(ctx: GenerationContext) -> "np.ndarray":
    """Paint the overlap count of every pixel as a grey level; return the levels.

    Pillow does not blend translucent fills into an RGB image, so the counts
    are accumulated explicitly and written in one go. A pixel counts as covered
    when its centre lies inside the circle. Counts above 255 saturate.
    """
    size = ctx.size
    counts = np.zeros((size, size), dtype=np.uint16)
    centres = np.arange(size, dtype=np.float64) + 0.5
    xx, yy = np.meshgrid(centres, centres)
    for shape, jit in zip(ctx.shapes, ctx.jitter):
        cx, cy, r = shape_geometry(shape, jit)
        counts += (xx - cx * size) ** 2 + (yy - cy * size) ** 2 <= (r * size) ** 2
    levels = np.minimum(counts, 255).astype(np.uint8)
    _write_pixels(ctx.surface, np.stack([levels] * 3, axis=-1))
    logger.debug("density pass: %d shapes, max overlap %d", len(ctx.shapes), int(levels.max(initial=0)))
    return levels


def fill_in_colors(ctx: GenerationContext) -> None:
    """Replace every grey level with its (jittered) palette colour."""
    ctx.jittered = jitter_palette(ctx.palette, ctx.config.jitter, ctx.rng)
    if not ctx.jittered:
        logger.debug("empty palette, leaving density image as is")
        return
    # The image is still grey here, so the red channel holds the count.
    levels = _read_pixels(ctx.surface, ctx.size)[..., 0].astype(np.intp)
    lut = np.array(ctx.jittered, dtype=np.uint8)
    _write_pixels(ctx.surface, lut[levels % len(lut)])


def draw_outlines(ctx: GenerationContext, color: Any) -> None:
    """Stroke every circle, reusing the geometry and jitter of the density pass."""
    size = ctx.size
    width = max(1, int(round(size * ctx.config.line_width)))
    half = width / 2
    draw = ImageDraw.Draw(ctx.surface)
    for shape, jit in zip(ctx.shapes, ctx.jitter):
        cx, cy, r = (v * size for v in shape_geometry(shape, jit))
        # Pillow strokes inwards from the bbox; grow it so the line is centred.
        bbox = [cx - r - half, cy - r - half, cx + r + half, cy + r + half]
        draw.ellipse(bbox, outline=color, width=width)


# ---------------------------- High-level API --------------------------------

def prepare_context(
    value: InputValue,
    target: Union[int, Image.Image],
    options: Options = None,
    *,
    rng: Optional[random.Random] = None,
    factory: Optional[SurfaceFactory] = new_surface,
) -> GenerationContext:
    """Resolve options, normalise input and derive shapes, jitter and palette.

    The input is normalised before the surface is acquired, so bad input never
    touches a caller's image.
    """
    config = resolve_config(options)
    source = normalize_input(value, buffer_length(config))
    surface, size = acquire_surface(target, factory)
    ctx = GenerationContext(
        config=config,
        surface=surface,
        size=size,
        rng=rng if rng is not None else rng_from_seed(config.seed),
        source=source,
    )
    ctx.shapes = derive_shapes(source, config.shape_count)
    # Drawn once up front: both passes must see the same values.
    ctx.jitter = [
        (ctx.rng.random() * config.jitter / 3,
         ctx.rng.random() * config.jitter / 3,
         ctx.rng.random() * config.jitter / 3)
        for _ in ctx.shapes
    ]
    ctx.palette = create_palette(config.color_count, source[config.shape_count * 2:])
    logger.debug("normalised %d bytes; palette %s", len(source), ctx.palette)
    return ctx


def render(ctx: GenerationContext) -> Image.Image:
    """Run density pass, colour mapping and outline pass; return the surface."""
    draw_density(ctx)
    fill_in_colors(ctx)
    line_color = ctx.config.line_color or determine_line_color(ctx.palette)
    logger.debug("line colour %r", line_color)
    draw_outlines(ctx, line_color)
    return ctx.surface


def generate(
    value: InputValue,
    target: Union[int, Image.Image] = DEFAULT_SIZE,
    options: Options = None,
    *,
    rng: Optional[random.Random] = None,
    factory: Optional[SurfaceFactory] = new_surface,
) -> Image.Image:
    """Render the visual hash of ``value``.

    target is either an edge length, in which case a new square RGB image is
    created and returned, or an existing RGB/RGBA image that is drawn into
    (its shorter side sets the size) and returned.
    """
    return render(prepare_context(value, target, options, rng=rng, factory=factory))


def save(
    value: InputValue,
    out_path: str,
    size: int = DEFAULT_SIZE,
    options: Options = None,
    *,
    rng: Optional[random.Random] = None,
) -> str:
    """High-level convenience. Returns the out_path after saving."""
    img = generate(value, size, options, rng=rng)
    img.save(out_path, format="PNG", optimize=True)
    return out_path


# ---------------------------- CLI -------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Render a stained-glass mosaic visual hash to PNG")
    ap.add_argument("input", help="Hex string (optionally 0x-prefixed) or any text")
    ap.add_argument("--out", required=True, help="Output PNG path")
    ap.add_argument("--size", type=int, default=DEFAULT_SIZE, help="Edge length in pixels")
    ap.add_argument("--text", action="store_true", help="Treat INPUT as text even if it looks like hex")
    ap.add_argument("--shapes", type=int, default=None, help="Number of circles (default 6)")
    ap.add_argument("--colors", type=int, default=None, help="Number of palette colours (default 3)")
    ap.add_argument("--line-width", type=float, default=None, help="Line width as a fraction of size (default 0.02)")
    ap.add_argument("--jitter", type=float, default=None, help="Random variation, 0 disables (default 3)")
    ap.add_argument("--line-color", default=None, help="Line colour, e.g. '#ffffff'; default picks black or white")
    ap.add_argument("--seed", type=int, default=None, help="Seed for reproducible output")
    ap.add_argument("--options", default=None, help="Path to JSON object with generation options")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log pipeline details")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    options = {}
    if args.options:
        with open(args.options, "r") as jf:
            options = json.load(jf)
        if not isinstance(options, dict):
            ap.error("--options JSON must be an object")
    flags = {
        "shape_count": args.shapes,
        "color_count": args.colors,
        "line_width": args.line_width,
        "jitter": args.jitter,
        "line_color": args.line_color,
        "seed": args.seed,
    }
    options.update({k: v for k, v in flags.items() if v is not None})

    value = args.input.encode("utf-8") if args.text else args.input
    try:
        out = save(value, args.out, args.size, options)
    except MosaicHashError as e:
        ap.error(str(e))
    print(out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
