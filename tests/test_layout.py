import math
from collections import defaultdict

import pytest

import infinite_collage as ic


def horizontal(**kw):
    return ic.Settings(mode=ic.MODE_HORIZONTAL, tile_size=100, gap=10, **kw)


def vertical(**kw):
    return ic.Settings(mode=ic.MODE_VERTICAL, tile_size=100, gap=10, **kw)


def by_band(placements, key):
    bands = defaultdict(list)
    for p in placements:
        bands[key(p)].append(p)
    return bands


def test_seeded_value_is_in_unit_interval_and_repeatable():
    values = [ic.seeded_value(i, 0.3712) for i in range(-200, 200)]
    assert all(0.0 <= v < 1.0 for v in values)
    assert values == [ic.seeded_value(i, 0.3712) for i in range(-200, 200)]
    assert len(set(values)) > 390


def test_seeded_value_scale_samples_scaled_index():
    assert ic.seeded_value(5, 0.25, scale=3) == ic.seeded_value(15, 0.25)


def test_seeded_value_at_origin_is_zero():
    assert ic.seeded_value(0, 0) == 0.0


def test_empty_photo_list_yields_no_tiles(small_canvas):
    assert ic.layout_tiles([], horizontal(), small_canvas, 0.5) == []


@pytest.mark.parametrize("settings", [horizontal(), vertical()])
def test_layout_is_deterministic(photos, small_canvas, settings):
    a = ic.layout_tiles(photos, settings, small_canvas, 0.123)
    b = ic.layout_tiles(photos, settings, small_canvas, 0.123)
    assert a == b
    assert len(a) > 0


@pytest.mark.parametrize("settings", [horizontal(), vertical()])
def test_tiles_keep_photo_aspect_ratio(photos, small_canvas, settings):
    for p in ic.layout_tiles(photos, settings, small_canvas, 0.77):
        assert 0 <= p.photo_index < len(photos)
        assert math.isclose(p.w / p.h, photos[p.photo_index].ratio, rel_tol=1e-6)


def test_horizontal_bands_share_height(photos, small_canvas):
    placements = ic.layout_tiles(photos, horizontal(), small_canvas, 0.77)
    assert all(p.h == 100 for p in placements)
    ys = sorted({p.y for p in placements})
    assert len(ys) == 2 * ic.OVERSCAN_LIMIT
    assert ys[0] == -ic.OVERSCAN_LIMIT * 110
    assert ys[-1] == (ic.OVERSCAN_LIMIT - 1) * 110


def test_vertical_columns_share_width(photos, small_canvas):
    placements = ic.layout_tiles(photos, vertical(), small_canvas, 0.77)
    assert all(p.w == 100 for p in placements)
    xs = sorted({p.x for p in placements})
    assert len(xs) == 2 * ic.OVERSCAN_LIMIT
    assert xs[0] == -ic.OVERSCAN_LIMIT * 110


def test_zero_seed_starts_center_band_at_overscan_edge(photos, small_canvas):
    placements = ic.layout_tiles(photos, horizontal(), small_canvas, 0.0)
    first = by_band(placements, lambda p: p.y)[0][0]
    assert first.x == -4 * small_canvas.width
    assert first.photo_index == 0


def test_zero_seed_starts_center_column_at_overscan_edge(photos, small_canvas):
    placements = ic.layout_tiles(photos, vertical(), small_canvas, 0.0)
    first = by_band(placements, lambda p: p.x)[0][0]
    assert first.y == -4 * small_canvas.height
    assert first.photo_index == 0


def test_horizontal_band_start_follows_seeded_values(photos, small_canvas):
    seed = 0.4242
    bands = by_band(ic.layout_tiles(photos, horizontal(), small_canvas, seed), lambda p: p.y)
    for r in (-40, -7, 3, 39):
        first = bands[r * 110][0]
        assert first.x == -4 * small_canvas.width + ic.seeded_value(r, seed) * small_canvas.width
        assert first.photo_index == math.floor(ic.seeded_value(2 * r, seed) * len(photos)) % len(photos)


def test_vertical_column_start_follows_seeded_values(photos, small_canvas):
    seed = 0.4242
    columns = by_band(ic.layout_tiles(photos, vertical(), small_canvas, seed), lambda p: p.x)
    for c in (-40, -7, 3, 39):
        first = columns[c * 110][0]
        assert first.y == -4 * small_canvas.height + ic.seeded_value(c, seed) * small_canvas.height
        assert first.photo_index == math.floor(ic.seeded_value(3 * c, seed) * len(photos)) % len(photos)


def test_horizontal_stride_is_one(photos, small_canvas):
    bands = by_band(ic.layout_tiles(photos, horizontal(), small_canvas, 0.9), lambda p: p.y)
    for band in bands.values():
        for a, b in zip(band, band[1:]):
            assert b.photo_index == (a.photo_index + 1) % len(photos)


def test_vertical_stride_is_seven(small_canvas):
    many = [ic.Photo(image=None, ratio=1.0 + i / 10) for i in range(10)]
    columns = by_band(ic.layout_tiles(many, vertical(), small_canvas, 0.9), lambda p: p.x)
    for column in columns.values():
        for a, b in zip(column, column[1:]):
            assert b.photo_index == (a.photo_index + 7) % len(many)


def test_bands_cover_the_overscanned_span(photos, small_canvas):
    w = small_canvas.width
    bands = by_band(ic.layout_tiles(photos, horizontal(), small_canvas, 0.61), lambda p: p.y)
    for band in bands.values():
        assert -4 * w <= band[0].x < -3 * w
        for a, b in zip(band, band[1:]):
            assert math.isclose(b.x, a.x + a.w + 10, abs_tol=1e-9)
        last = band[-1]
        assert last.x < 4 * w
        assert last.x + last.w + 10 >= 4 * w


def test_columns_cover_the_overscanned_span(photos, small_canvas):
    h = small_canvas.height
    columns = by_band(ic.layout_tiles(photos, vertical(), small_canvas, 0.61), lambda p: p.x)
    for column in columns.values():
        assert -4 * h <= column[0].y < -3 * h
        for a, b in zip(column, column[1:]):
            assert math.isclose(b.y, a.y + a.h + 10, abs_tol=1e-9)
        last = column[-1]
        assert last.y < 4 * h
        assert last.y + last.h + 10 >= 4 * h


def test_changing_seed_changes_band_starts(photos, small_canvas):
    def starts(seed):
        bands = by_band(ic.layout_tiles(photos, horizontal(), small_canvas, seed), lambda p: p.y)
        return [(band[0].x, band[0].photo_index) for _, band in sorted(bands.items())]

    reference = starts(0.1)
    assert any(starts(seed) != reference for seed in (0.2, 0.35, 0.5, 0.8))


def test_single_photo_is_repeated(small_canvas):
    single = [ic.Photo(image=None, ratio=1.25)]
    placements = ic.layout_tiles(single, horizontal(), small_canvas, 0.3)
    assert placements
    assert {p.photo_index for p in placements} == {0}


def test_zero_gap_is_allowed(photos, small_canvas):
    settings = ic.Settings(mode=ic.MODE_HORIZONTAL, tile_size=100, gap=0)
    assert ic.layout_tiles(photos, settings, small_canvas, 0.3)


def test_zero_step_is_rejected(photos, small_canvas):
    settings = ic.Settings(mode=ic.MODE_HORIZONTAL, tile_size=0, gap=0)
    with pytest.raises(ValueError):
        ic.layout_tiles(photos, settings, small_canvas, 0.3)


def test_unknown_mode_is_rejected(photos, small_canvas):
    with pytest.raises(ValueError):
        ic.layout_tiles(photos, ic.Settings(mode="diagonal"), small_canvas, 0.3)
