import struct
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from bmp_tools.bmp_writer import PIXEL_DATA_OFFSET
from bmp_tools.errors import DecodeError, DimensionError, InputError
from bmp_tools.processing import (
    MAX_IMAGE_BYTES,
    BatchJob,
    ProcessingOptions,
    ProgressTracker,
    output_filename,
    process_archive,
    process_batch,
    process_image,
    process_path,
    save_result,
)
from bmp_tools.raster import IndexedRaster, Raster, build_preview

from conftest import encode_png, make_zip, solid_png

RED = (255, 0, 0)


def _no_dither(**overrides) -> ProcessingOptions:
    values = dict(quantization="median-cut", dithering=False, max_size=256)
    values.update(overrides)
    return ProcessingOptions(**values)


def test_solid_red_end_to_end() -> None:
    progress = []
    result = process_image(solid_png(16, 16, RED), "red.png", _no_dither(), progress.append)

    assert (result.width, result.height) == (16, 16)
    assert result.palette == [RED]
    assert result.palette_size == 1
    assert result.filename == "red.bmp"
    assert result.original_filename == "red.png"
    assert result.byte_size == len(result.data) == PIXEL_DATA_OFFSET + 16 * 16
    assert result.data[PIXEL_DATA_OFFSET:] == bytes(256)
    assert result.data[54:58] == bytes([0, 0, 255, 0])
    assert np.all(result.preview.pixels == (255, 0, 0, 255))
    assert progress == [10, 20, 30, 50, 70, 85, 95, 100]


@pytest.mark.parametrize("interpolation", ["progressive", "lanczos", "bicubic", "hermite"])
@pytest.mark.parametrize("quantization", ["median-cut", "octree", "k-means"])
def test_every_strategy_combination_produces_valid_output(interpolation, quantization) -> None:
    rng = np.random.default_rng(2)

    pixels = rng.integers(0, 256, size=(50, 70, 3), dtype=np.uint8)
    data = encode_png(Image.fromarray(pixels))
    options = ProcessingOptions(
        quantization=quantization,
        interpolation=interpolation,
        dithering=True,
        sharpening=True,
        seed=1,
    )
    result = process_image(data, "noise.png", options)
    assert (result.width, result.height) == (64, 48)
    width, height = struct.unpack_from("<ii", result.data, 18)
    assert (width, height) == (64, 48)
    assert 1 <= result.palette_size <= 256
    assert max(result.data[PIXEL_DATA_OFFSET:]) < result.palette_size


def test_large_sources_are_planned_down() -> None:
    result = process_image(solid_png(1000, 500, (0, 128, 0)), "wide.png", _no_dither())
    assert (result.width, result.height) == (256, 128)
    assert result.preview.size == (256, 128)


def test_transparent_color_takes_last_slot() -> None:
    options = _no_dither(transparent_mode=True, transparent_color=(0, 255, 0))
    result = process_image(solid_png(16, 16, RED), "red.png", options)
    assert result.palette == [RED, (0, 255, 0)]
    assert result.palette_size == 2


def test_transparent_mode_defaults_to_blue() -> None:
    options = _no_dither(transparent_mode=True)
    assert options.reserved_color == (0, 0, 255)
    assert _no_dither().reserved_color is None


def test_dithering_replaces_quantizer_indices() -> None:
    result = process_image(solid_png(32, 32, (128, 128, 128)), "gray.png", ProcessingOptions(dithering=True))
    assert result.palette == [(128, 128, 128)]
    assert result.data[PIXEL_DATA_OFFSET:] == bytes(32 * 32)


def test_kmeans_seed_makes_runs_reproducible() -> None:
    rng = np.random.default_rng(8)

    data = encode_png(Image.fromarray(rng.integers(0, 256, size=(40, 40, 3), dtype=np.uint8)))
    options = ProcessingOptions(quantization="k-means", dithering=False, seed=77)
    assert process_image(data, "a.png", options).data == process_image(data, "a.png", options).data


@pytest.mark.parametrize(
    "data,name",
    [
        (b"", "empty.png"),
        (b"\0" * (MAX_IMAGE_BYTES + 1), "huge.png"),
        (b"not important", "notes.txt"),
    ],
)
def test_input_errors(data, name) -> None:
    with pytest.raises(InputError):
        process_image(data, name)


def test_corrupt_image_is_a_decode_error() -> None:
    with pytest.raises(DecodeError):
        process_image(b"garbage", "broken.png")


def test_zero_sized_decode_is_a_dimension_error() -> None:
    class EmptyDecoder:
        def decode(self, data):
            return Raster(0, 0, np.zeros((0, 0, 4), dtype=np.uint8))

    with pytest.raises(DimensionError):
        process_image(b"x", "x.png", decoder=EmptyDecoder())


def test_progress_callback_errors_propagate() -> None:
    def explode(percent):
        if percent >= 50:
            raise RuntimeError("progress sink closed")

    with pytest.raises(RuntimeError, match="progress sink closed"):
        process_image(solid_png(16, 16, RED), "red.png", _no_dither(), explode)


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_size": 300},
        {"quantization": "popularity"},
        {"interpolation": "nearest"},
        {"transparent_color": (0, 0, 300)},
    ],
)
def test_invalid_options(overrides) -> None:
    with pytest.raises(InputError):
        ProcessingOptions(**overrides)


def test_progress_tracker_is_monotonic() -> None:
    seen = []
    tracker = ProgressTracker(seen.append)
    band = tracker.band(50, 100)
    tracker.report(10)
    tracker.report(5)
    band(0)
    band(50)
    tracker.report(60)
    band(100)
    assert seen == [10, 50, 75, 100]


def test_archive_with_corrupt_entry_skips_and_continues() -> None:
    archive = make_zip(
        [
            ("first.png", solid_png(16, 16, RED)),
            ("broken.png", b"this is not a png"),
            ("third.png", solid_png(32, 16, (0, 0, 255))),
        ]
    )
    progress = []
    batch = process_archive(archive, "set.zip", _no_dither(), progress.append)

    assert [r.filename for r in batch.results] == ["first.bmp", "third.bmp"]
    assert [f.name for f in batch.failures] == ["broken.png"]
    assert isinstance(batch.failures[0].error, DecodeError)
    assert not batch.ok
    assert progress == sorted(progress)
    assert progress[0] == 5
    assert 20 in progress
    assert progress[-1] == 100
    assert progress.count(100) == 1


def test_archive_where_every_entry_fails_stops_short_of_100() -> None:
    archive = make_zip([("one.png", b"broken"), ("two.png", b"also broken")])
    progress = []
    batch = process_archive(archive, "bad.zip", _no_dither(), progress.append)

    assert batch.results == []
    assert [f.name for f in batch.failures] == ["one.png", "two.png"]
    # each entry gets through its 10% input check before decoding fails
    assert progress == [5, 20, 24, 64]


def test_archive_entries_sharing_a_name_are_numbered() -> None:
    archive = make_zip(
        [
            ("a/x.png", solid_png(16, 16, RED)),
            ("b/x.png", solid_png(16, 16, (0, 0, 255))),
            ("c/x.png", solid_png(16, 16, (0, 0, 0))),
        ]
    )
    batch = process_archive(archive, "dupes.zip", _no_dither())
    assert [r.filename for r in batch.results] == ["x.bmp", "x_2.bmp", "x_3.bmp"]
    assert [r.original_filename for r in batch.results] == ["a/x.png", "b/x.png", "c/x.png"]


def test_archive_rejects_transparent_mode_and_bad_payloads() -> None:
    archive = make_zip([("a.png", solid_png(16, 16, RED))])
    with pytest.raises(InputError):
        process_archive(archive, "a.zip", _no_dither(transparent_mode=True))
    with pytest.raises(InputError):
        process_archive(make_zip([("a.txt", b"x")]), "a.zip")
    with pytest.raises(InputError):
        process_archive(b"", "a.zip")


def test_batch_gives_each_image_an_equal_share() -> None:
    job = BatchJob(
        sources=[("a.png", solid_png(16, 16, RED)), ("b.png", solid_png(16, 16, (0, 0, 0)))],
        options=_no_dither(),
    )
    progress = []
    batch = process_batch(job, progress.append)
    assert batch.ok
    assert len(batch.results) == 2
    assert 50 in progress
    assert all(p < 50 for p in progress[: progress.index(50)])
    assert progress == sorted(set(progress))
    assert progress[-1] == 100


def test_batch_requires_sources_and_rejects_transparent_mode() -> None:
    with pytest.raises(InputError):
        process_batch(BatchJob(sources=[], options=_no_dither()))
    with pytest.raises(InputError):
        process_batch(
            BatchJob(sources=[("a.png", solid_png(16, 16, RED))], options=_no_dither(transparent_mode=True))
        )


def test_preview_expands_palette() -> None:
    indexed = IndexedRaster.from_flat(2, 1, np.array([1, 0]))
    preview = build_preview(indexed, [(1, 2, 3), (4, 5, 6)])
    assert preview.pixels.tolist() == [[[4, 5, 6, 255], [1, 2, 3, 255]]]


def test_output_filename() -> None:
    assert output_filename("photos/cat.final.jpeg") == "cat.final.bmp"
    assert output_filename("C:\\pics\\dog.png") == "dog.bmp"


def test_process_path_and_save(tmp_path: Path) -> None:
    source = tmp_path / "tile.png"
    source.write_bytes(solid_png(16, 16, RED))
    batch = process_path(source, _no_dither())
    written = save_result(batch.results[0], tmp_path / "out", preview=True)
    assert written == tmp_path / "out" / "tile.bmp"
    assert written.read_bytes()[:2] == b"BM"
    assert (tmp_path / "out" / "tile.preview.png").exists()
