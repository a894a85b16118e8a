from __future__ import annotations

import argparse
from concurrent.futures import Future, ThreadPoolExecutor
import dataclasses
import io
import math
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple

from PIL import Image, ImageOps


SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}

# allow large images; keep a very high limit to avoid PIL warning spam
Image.MAX_IMAGE_PIXELS = max(int(getattr(Image, "MAX_IMAGE_PIXELS", 0) or 0), 250_000_000)

RATIOS: dict[str, float] = {
    "3:2": 1.5,
    "4:3": 1.333,
    "1:1": 1.0,
    "16:9": 1.777,
    "21:9": 2.333,
    "3:4": 0.75,
    "2:3": 0.666,
    "9:16": 0.5625,
}

RESOLUTIONS: dict[str, int] = {
    "1080p": 1920,
    "2K": 2560,
    "4K": 3840,
    "5K": 5120,
}

DEFAULT_RATIO = 1.5
DEFAULT_RESOLUTION = 1920

MODE_HORIZONTAL = "horizontal"
MODE_VERTICAL = "vertical"
MODES = (MODE_HORIZONTAL, MODE_VERTICAL)

# bands computed on each side of the center, and how many canvas extents each band runs
OVERSCAN_LIMIT = 40
OVERSCAN_EXTENT = 4

HORIZONTAL_STRIDE = 1
VERTICAL_STRIDE = 7

JPEG_QUALITY = 92


def _effective_workers(workers: int) -> int:
    if workers <= 0:
        cpu = os.cpu_count() or 4
        return min(32, max(1, cpu * 2))
    return max(1, int(workers))


@dataclass(frozen=True)
class CanvasSpec:
    width: int
    height: int


@dataclass(frozen=True)
class Offset:
    x: float = 0.0
    y: float = 0.0

    def dragged(self, dx: float, dy: float, zoom: float = 1.0) -> "Offset":
        """Offset after a pointer drag of (dx, dy) screen pixels at the given preview zoom."""
        z = zoom if zoom > 0 else 1.0
        return Offset(self.x + dx / z, self.y + dy / z)


@dataclass(frozen=True)
class Settings:
    mode: str = MODE_VERTICAL
    tile_size: float = 300
    gap: float = 12
    tilt: float = -12
    ratio: str = "3:2"
    resolution: str = "1080p"
    background: str = "#000000"
    zoom: float = 0.4
    inverted: bool = False

    def replace(self, **changes) -> "Settings":
        return dataclasses.replace(self, **changes)

    def canvas(self) -> CanvasSpec:
        return resolve_canvas(self.ratio, self.resolution, self.inverted)


@dataclass(eq=False)
class Photo:
    """A decoded image ready for layout.

    ``ratio`` is width / height after EXIF orientation and is assumed to be a
    strictly positive finite number. The decoded image is owned by the photo
    and closed by :meth:`release`.
    """

    image: Image.Image
    ratio: float
    path: Path | None = None
    released: bool = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self.image.close()


@dataclass(frozen=True)
class TilePlacement:
    photo_index: int
    x: float
    y: float
    w: float
    h: float


def new_seed() -> float:
    return random.random()


def resolve_canvas(ratio_key: str, resolution_key: str, inverted: bool = False) -> CanvasSpec:
    """Canvas size for a named aspect ratio and baseline resolution.

    The baseline length goes to the longer side. Unknown keys fall back to
    3:2 and 1920 px.
    """
    base = RESOLUTIONS.get(resolution_key, DEFAULT_RESOLUTION)
    r = RATIOS.get(ratio_key, DEFAULT_RATIO)
    if inverted:
        r = 1.0 / r

    if r >= 1:
        w = base
        h = base / r
    else:
        h = base
        w = base * r
    return CanvasSpec(max(1, int(round(w))), max(1, int(round(h))))


def canvas_label(canvas: CanvasSpec) -> str:
    return f"{canvas.width}x{canvas.height}"


def seeded_value(index: float, seed: float, scale: float = 1) -> float:
    v = math.sin(index * scale * 12.9898 + seed * 43758.5453) * 43758.5453
    return v - math.floor(v)


def _start_index(index: int, seed: float, scale: int, n: int) -> int:
    return int(math.floor(seeded_value(index, seed, scale) * n)) % n


def _layout_bands(
    photos: Sequence[Photo], size: float, gap: float, canvas: CanvasSpec, seed: float
) -> Iterator[TilePlacement]:
    n = len(photos)
    w = canvas.width
    end = w * OVERSCAN_EXTENT
    for r in range(-OVERSCAN_LIMIT, OVERSCAN_LIMIT):
        y = r * (size + gap)
        x = -end + seeded_value(r, seed) * w
        idx = _start_index(r, seed, 2, n)
        while x < end:
            dw = size * photos[idx].ratio
            yield TilePlacement(idx, x, y, dw, size)
            x += dw + gap
            idx = (idx + HORIZONTAL_STRIDE) % n


def _layout_columns(
    photos: Sequence[Photo], size: float, gap: float, canvas: CanvasSpec, seed: float
) -> Iterator[TilePlacement]:
    n = len(photos)
    h = canvas.height
    end = h * OVERSCAN_EXTENT
    for c in range(-OVERSCAN_LIMIT, OVERSCAN_LIMIT):
        x = c * (size + gap)
        y = -end + seeded_value(c, seed) * h
        idx = _start_index(c, seed, 3, n)
        while y < end:
            dh = size / photos[idx].ratio
            yield TilePlacement(idx, x, y, size, dh)
            y += dh + gap
            idx = (idx + VERTICAL_STRIDE) % n


def layout_tiles(
    photos: Sequence[Photo],
    settings: Settings,
    canvas: CanvasSpec,
    seed: float,
) -> List[TilePlacement]:
    """Tile placements for the whole overscanned field, in untransformed canvas units.

    Coordinates are relative to the canvas center. Bands (horizontal mode) or
    columns (vertical mode) are emitted from -OVERSCAN_LIMIT upward, each one
    walked from its seeded start until it passes OVERSCAN_EXTENT canvas
    extents. The result depends only on the arguments.
    """
    if not photos:
        return []

    size = float(settings.tile_size)
    gap = float(settings.gap)
    if not size > 0 or not gap >= 0 or not math.isfinite(size + gap):
        raise ValueError("tile_size must be positive and gap non-negative")

    if settings.mode == MODE_HORIZONTAL:
        return list(_layout_bands(photos, size, gap, canvas, seed))
    if settings.mode == MODE_VERTICAL:
        return list(_layout_columns(photos, size, gap, canvas, seed))
    raise ValueError(f"unknown layout mode: {settings.mode}")


def iter_image_files(folder: Path, recursive: bool) -> List[Path]:
    if not folder.exists() or not folder.is_dir():
        raise FileNotFoundError(f"input folder not found: {folder}")

    files: List[Path] = []
    if recursive:
        walker: Iterable[Path] = folder.rglob("*")
    else:
        walker = folder.glob("*")

    for p in walker:
        if p.is_file() and p.suffix.lower() in SUPPORTED_EXTS:
            files.append(p)

    return sorted(files)


def open_image(path: Path) -> Image.Image:
    with Image.open(path) as src:
        img = ImageOps.exif_transpose(src)
        if img.mode not in ("RGB", "RGBA"):
            keep_alpha = img.mode in ("LA", "PA") or "transparency" in img.info
            img = img.convert("RGBA" if keep_alpha else "RGB")
        img.load()
    return img


def load_photo(path: Path) -> Photo:
    img = open_image(path)
    w, h = img.size
    if w <= 0 or h <= 0:
        img.close()
        raise ValueError(f"image has no pixels: {path}")
    return Photo(image=img, ratio=w / h, path=path)


def load_photos(paths: Sequence[Path], workers: int = 0) -> List[Photo]:
    """Decode every readable image in ``paths``, keeping input order.

    Files that cannot be decoded are skipped.
    """

    def probe(p: Path) -> Photo | None:
        try:
            return load_photo(Path(p))
        except (OSError, ValueError):
            return None

    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(paths) <= 8:
        photos: List[Photo] = []
        for p in paths:
            photo = probe(p)
            if photo is not None:
                photos.append(photo)
        return photos

    with ThreadPoolExecutor(max_workers=n_workers) as ex:
        photos = [photo for photo in ex.map(probe, paths) if photo is not None]
    return photos


class PhotoLoader:
    """Decodes photos on a thread pool; each submitted path yields a Future[Photo]."""

    def __init__(self, workers: int = 0) -> None:
        self._executor = ThreadPoolExecutor(max_workers=_effective_workers(workers))

    def submit(self, path: Path | str) -> "Future[Photo]":
        return self._executor.submit(load_photo, Path(path))

    def submit_all(self, paths: Iterable[Path | str]) -> "List[Future[Photo]]":
        return [self.submit(p) for p in paths]

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "PhotoLoader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class Gallery:
    """The photo collection together with the seed and pan offset it is viewed with.

    Photos removed from the gallery, individually or by :meth:`clear`, are
    released exactly once.
    """

    def __init__(self, photos: Iterable[Photo] = (), seed: float | None = None, rng: random.Random | None = None) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._photos: List[Photo] = list(photos)
        self.seed: float = self._rng.random() if seed is None else float(seed)
        self.offset = Offset()

    @property
    def photos(self) -> Tuple[Photo, ...]:
        return tuple(self._photos)

    def __len__(self) -> int:
        return len(self._photos)

    def add(self, photos: Iterable[Photo]) -> None:
        self._photos.extend(photos)

    def remove(self, index: int) -> Photo:
        photo = self._photos.pop(index)
        photo.release()
        return photo

    def clear(self) -> None:
        photos, self._photos = self._photos, []
        for p in photos:
            p.release()
        self.offset = Offset()
        self.seed = self._rng.random()

    def shuffle(self) -> None:
        if not self._photos:
            return
        self._rng.shuffle(self._photos)
        self.seed = self._rng.random()

    def pan(self, dx: float, dy: float, zoom: float = 1.0) -> None:
        self.offset = self.offset.dragged(dx, dy, zoom)


def parse_rgb(value: str) -> Tuple[int, int, int]:
    s = value.strip().lower()
    if s.startswith("#"):
        s = s[1:]
    if len(s) != 6 or any(c not in "0123456789abcdef" for c in s):
        raise ValueError("background must be RRGGBB or #RRGGBB")
    r = int(s[0:2], 16)
    g = int(s[2:4], 16)
    b = int(s[4:6], 16)
    return (r, g, b)


def safe_resize(
    img: Image.Image,
    size: Tuple[int, int],
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    w, h = size
    if w <= 0 or h <= 0:
        raise ValueError("resize size must be positive")
    return img.resize((w, h), resample=resample, reducing_gap=3.0)


def make_sprite(
    photo: Photo,
    size: Tuple[int, int],
    tilt: float,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    """The photo scaled to ``size`` and rotated clockwise by ``tilt`` degrees."""
    sprite = safe_resize(photo.image, size, resample=resample)
    if tilt % 360 == 0:
        return sprite
    if sprite.mode != "RGBA":
        sprite = sprite.convert("RGBA")
    # PIL rotates counter-clockwise; the canvas y axis points down
    return sprite.rotate(-tilt, resample=Image.Resampling.BICUBIC, expand=True)


def vignette_mask(
    size: Tuple[int, int],
    inner: float = 0.1,
    outer: float = 0.9,
    opacity: float = 0.3,
    block: int = 8,
) -> Image.Image:
    """Radial alpha ramp centered on ``size``.

    Zero inside ``inner`` * width, ``opacity`` at ``outer`` * width and beyond,
    linear in between. Computed on a ``block``-pixel grid and upsampled.
    """
    w, h = size
    r0 = w * inner
    r1 = w * outer
    span = max(1e-9, r1 - r0)
    peak = 255.0 * opacity
    cx = w / 2.0
    cy = h / 2.0

    mw = max(1, int(math.ceil(w / block)))
    mh = max(1, int(math.ceil(h / block)))
    values: List[int] = []
    for j in range(mh):
        dy = (j + 0.5) * h / mh - cy
        for i in range(mw):
            dx = (i + 0.5) * w / mw - cx
            t = (math.hypot(dx, dy) - r0) / span
            t = max(0.0, min(1.0, t))
            values.append(int(round(peak * t)))

    small = Image.new("L", (mw, mh))
    small.putdata(values)
    if (mw, mh) == (w, h):
        return small
    return small.resize((w, h), resample=Image.Resampling.BILINEAR)


def apply_vignette(img: Image.Image) -> Image.Image:
    mask = vignette_mask(img.size)
    shade = Image.new(img.mode, img.size, color=0)
    return Image.composite(shade, img, mask)


def _to_screen(
    px: float, py: float, canvas: CanvasSpec, offset: Offset, cos_t: float, sin_t: float, scale: float
) -> Tuple[float, float]:
    qx = px + offset.x
    qy = py + offset.y
    sx = canvas.width / 2.0 + qx * cos_t - qy * sin_t
    sy = canvas.height / 2.0 + qx * sin_t + qy * cos_t
    return sx * scale, sy * scale


def render_collage(
    photos: Sequence[Photo],
    settings: Settings,
    seed: float,
    offset: Offset = Offset(),
    *,
    canvas: CanvasSpec | None = None,
    placements: Sequence[TilePlacement] | None = None,
    scale: float = 1.0,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
    workers: int = 0,
    sprite_cache: dict | None = None,
) -> Image.Image:
    """Paint the tile field onto the canvas and overlay the vignette.

    The whole field shares one transform: move to the canvas center, rotate
    by ``settings.tilt`` degrees, then shift by ``offset``. ``scale`` renders
    the same view at a reduced size for previews. Tiles entirely outside the
    canvas are not drawn.
    """
    if canvas is None:
        canvas = settings.canvas()
    out_w = max(1, int(round(canvas.width * scale)))
    out_h = max(1, int(round(canvas.height * scale)))
    out = Image.new("RGB", (out_w, out_h), color=parse_rgb(settings.background))

    if not photos:
        return out

    if placements is None:
        placements = layout_tiles(photos, settings, canvas, seed)

    theta = math.radians(settings.tilt)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)

    sizes: dict[int, Tuple[int, int]] = {}
    visible: List[Tuple[int, float, float]] = []
    for p in placements:
        cx, cy = _to_screen(p.x + p.w / 2.0, p.y + p.h / 2.0, canvas, offset, cos_t, sin_t, scale)
        radius = math.hypot(p.w, p.h) * scale / 2.0
        if cx + radius < 0 or cy + radius < 0 or cx - radius > out_w or cy - radius > out_h:
            continue
        if p.photo_index not in sizes:
            sizes[p.photo_index] = (max(1, int(round(p.w * scale))), max(1, int(round(p.h * scale))))
        visible.append((p.photo_index, cx, cy))

    cache = sprite_cache if sprite_cache is not None else {}

    def sprite_key(idx: int) -> tuple:
        photo = photos[idx]
        source = str(photo.path) if photo.path is not None else id(photo)
        return (source, sizes[idx], settings.tilt, int(resample))

    missing = [idx for idx in sizes if sprite_key(idx) not in cache]

    def prepare_one(idx: int) -> Tuple[int, Image.Image]:
        return idx, make_sprite(photos[idx], sizes[idx], settings.tilt, resample=resample)

    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(missing) <= 2:
        prepared = [prepare_one(idx) for idx in missing]
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            prepared = list(ex.map(prepare_one, missing))
    for idx, sprite in prepared:
        cache[sprite_key(idx)] = sprite

    sprites = {idx: cache[sprite_key(idx)] for idx in sizes}
    for idx, cx, cy in visible:
        sprite = sprites[idx]
        sw, sh = sprite.size
        x = int(math.floor(cx - sw / 2.0 + 0.5))
        y = int(math.floor(cy - sh / 2.0 + 0.5))
        if sprite.mode == "RGBA":
            out.paste(sprite, (x, y), mask=sprite)
        else:
            out.paste(sprite, (x, y))

    return apply_vignette(out)


def encode_image(img: Image.Image, fmt: str = "JPEG", quality: int = JPEG_QUALITY) -> bytes:
    fmt = fmt.upper()
    if fmt == "JPG":
        fmt = "JPEG"
    buf = io.BytesIO()
    if fmt == "JPEG":
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(buf, format=fmt, quality=int(quality), subsampling=1, optimize=True)
    else:
        img.save(buf, format=fmt)
    return buf.getvalue()


def save_image(img: Image.Image, out_path: Path, quality: int = JPEG_QUALITY) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    ext = out_path.suffix.lower()
    if ext in {".jpg", ".jpeg"}:
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(out_path, quality=int(quality), subsampling=1, optimize=True)
    else:
        img.save(out_path)
    return out_path


def default_export_name(now: float | None = None) -> str:
    ms = int(round((time.time() if now is None else now) * 1000))
    return f"gallery_{ms}.jpg"


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Render a seamless tiled collage of photos onto a fixed-size canvas. The same seed and options always give the same picture."
    )

    parser.add_argument("--input", type=str, required=True, help="Input folder containing photos.")
    parser.add_argument("--recursive", action="store_true", help="Scan input folder recursively")
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file path (jpg or png). Defaults to gallery_<timestamp>.jpg",
    )

    parser.add_argument(
        "--mode",
        type=str,
        default=MODE_VERTICAL,
        choices=list(MODES),
        help="horizontal: rows of equal-height photos; vertical: columns of equal-width photos.",
    )
    parser.add_argument("--tile-size", type=float, default=300, help="Row height or column width in pixels.")
    parser.add_argument("--gap", type=float, default=12, help="Spacing between tiles and between rows/columns.")
    parser.add_argument("--tilt", type=float, default=-12, help="Rotation of the tile field in degrees.")

    parser.add_argument("--ratio", type=str, default="3:2", choices=list(RATIOS), help="Output aspect ratio.")
    parser.add_argument(
        "--resolution",
        type=str,
        default="1080p",
        choices=list(RESOLUTIONS),
        help="Length of the longer output side.",
    )
    parser.add_argument("--invert", action="store_true", help="Swap the canvas orientation.")
    parser.add_argument(
        "--background",
        type=str,
        default="000000",
        help="Background color in RRGGBB or #RRGGBB",
    )

    parser.add_argument("--offset-x", type=float, default=0.0, help="Pan offset in canvas pixels.")
    parser.add_argument("--offset-y", type=float, default=0.0, help="Pan offset in canvas pixels.")

    parser.add_argument(
        "--seed",
        type=float,
        default=None,
        help="Layout seed in [0, 1) (for reproducible results). Random if omitted.",
    )
    parser.add_argument(
        "--shuffle",
        action="store_true",
        help="Shuffle photo order before tiling",
    )

    parser.add_argument("--quality", type=int, default=JPEG_QUALITY, help="JPEG quality.")
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Thread workers for image IO/resize. 0 means auto.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print layout statistics to stdout",
    )

    args = parser.parse_args(argv)

    background = parse_rgb(args.background)
    if args.tile_size <= 0 or args.gap < 0:
        raise SystemExit("--tile-size must be positive and --gap non-negative")

    folder = Path(args.input)
    files = iter_image_files(folder, recursive=args.recursive)
    if not files:
        raise SystemExit(f"No images found in: {folder}")

    seed = new_seed() if args.seed is None else float(args.seed)

    if args.shuffle:
        rng = random.Random(seed)
        rng.shuffle(files)

    photos = load_photos(files, workers=args.workers)
    if not photos:
        raise SystemExit("No readable images")

    settings = Settings(
        mode=args.mode,
        tile_size=args.tile_size,
        gap=args.gap,
        tilt=args.tilt,
        ratio=args.ratio,
        resolution=args.resolution,
        background="#%02x%02x%02x" % background,
        inverted=bool(args.invert),
    )
    canvas = settings.canvas()
    offset = Offset(args.offset_x, args.offset_y)

    placements = layout_tiles(photos, settings, canvas, seed)
    img = render_collage(
        photos,
        settings,
        seed,
        offset,
        canvas=canvas,
        placements=placements,
        workers=args.workers,
    )

    if args.stats:
        used = len({p.photo_index for p in placements})
        print(f"tiles: n={len(placements)}; photos used={used}/{len(photos)}")

    out_path = save_image(img, Path(args.output or default_export_name()), quality=args.quality)
    for p in photos:
        p.release()

    print(f"seed={seed!r}  canvas={canvas_label(canvas)}  mode={settings.mode}")
    print(f"Saved: {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
