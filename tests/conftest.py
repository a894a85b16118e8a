from __future__ import annotations

import pytest
from PIL import Image

import infinite_collage as ic


def solid_photo(width: int, height: int, color=(255, 0, 0)) -> ic.Photo:
    return ic.Photo(image=Image.new("RGB", (width, height), color=color), ratio=width / height)


@pytest.fixture
def photos() -> list[ic.Photo]:
    sizes = [(150, 100), (75, 100), (100, 100), (200, 100), (50, 100)]
    return [solid_photo(w, h) for w, h in sizes]


@pytest.fixture
def small_canvas() -> ic.CanvasSpec:
    return ic.CanvasSpec(400, 300)


@pytest.fixture
def photo_dir(tmp_path):
    folder = tmp_path / "input"
    folder.mkdir()
    Image.new("RGB", (300, 200), color=(200, 40, 40)).save(folder / "a.jpg", quality=90)
    Image.new("RGB", (100, 200), color=(40, 200, 40)).save(folder / "b.png")
    Image.new("RGBA", (120, 120), color=(40, 40, 200, 128)).save(folder / "c.png")
    (folder / "notes.txt").write_text("not an image")
    return folder
