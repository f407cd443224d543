"""Binary model file format.

Little-endian layout:

    int32   glyph count
    byte    one ASCII byte per glyph label
    float64 Leaky ReLU alpha
    int32   layer count
    per layer:
        int32   rows
        int32   cols
        float64 rows * cols weights, row-major
        float64 rows biases

Decoding checks every declared dimension against the remaining bytes and
the previous layer's shape before reading any weights.
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path

import numpy as np

from glyphsight.engine.errors import ConfigurationError, ModelFormatError
from glyphsight.nn.model import Layer, Model, OutputActivation

logger = logging.getLogger(__name__)

_INT32 = struct.Struct("<i")
_FLOAT64 = struct.Struct("<d")
_DOUBLES = np.dtype("<f8")


def encode_model(model: Model) -> bytes:
    parts = [_INT32.pack(len(model.glyphs))]
    for glyph in model.glyphs:
        if len(glyph) != 1 or not glyph.isascii():
            raise ModelFormatError("glyphs", f"label {glyph!r} is not a single ASCII character")
        parts.append(glyph.encode("ascii"))
    parts.append(_FLOAT64.pack(model.alpha))
    parts.append(_INT32.pack(len(model.layers)))
    for layer in model.layers:
        parts.append(_INT32.pack(layer.rows))
        parts.append(_INT32.pack(layer.cols))
        parts.append(np.ascontiguousarray(layer.weights, dtype=_DOUBLES).tobytes())
        parts.append(np.ascontiguousarray(layer.biases, dtype=_DOUBLES).tobytes())
    return b"".join(parts)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, n: int, dimension: str) -> memoryview:
        if n > self.remaining:
            raise ModelFormatError(dimension, f"needs {n} bytes but only {self.remaining} remain")
        chunk = self.data[self.offset : self.offset + n]
        self.offset += n
        return chunk

    def int32(self, dimension: str) -> int:
        return _INT32.unpack(self.take(_INT32.size, dimension))[0]

    def float64(self, dimension: str) -> float:
        return _FLOAT64.unpack(self.take(_FLOAT64.size, dimension))[0]

    def doubles(self, count: int, dimension: str) -> np.ndarray:
        return np.frombuffer(self.take(count * _DOUBLES.itemsize, dimension), dtype=_DOUBLES).astype(np.float64)


def decode_model(data: bytes, output: OutputActivation = OutputActivation.SOFTMAX) -> Model:
    reader = _Reader(data)

    glyph_count = reader.int32("glyph count")
    if glyph_count <= 0:
        raise ModelFormatError("glyph count", f"must be positive, got {glyph_count}")
    if glyph_count > reader.remaining:
        raise ModelFormatError("glyph count", f"declares {glyph_count} labels but only {reader.remaining} bytes remain")
    raw = bytes(reader.take(glyph_count, "glyph labels"))
    try:
        glyphs = tuple(raw.decode("ascii"))
    except UnicodeDecodeError as e:
        raise ModelFormatError("glyph labels", f"not ASCII: {e}") from e

    alpha = reader.float64("alpha")

    layer_count = reader.int32("layer count")
    if layer_count <= 0:
        raise ModelFormatError("layer count", f"must be positive, got {layer_count}")

    layers = []
    expected_cols: int | None = None
    for i in range(layer_count):
        rows = reader.int32(f"layer {i} rows")
        cols = reader.int32(f"layer {i} columns")
        if rows <= 0:
            raise ModelFormatError(f"layer {i} rows", f"must be positive, got {rows}")
        if cols <= 0:
            raise ModelFormatError(f"layer {i} columns", f"must be positive, got {cols}")
        if expected_cols is not None and cols != expected_cols:
            raise ModelFormatError(f"layer {i} columns", f"declared {cols}, previous layer has {expected_cols} rows")
        if i == layer_count - 1 and rows != glyph_count:
            raise ModelFormatError(f"layer {i} rows", f"declared {rows}, model has {glyph_count} glyphs")

        needed = (rows * cols + rows) * _DOUBLES.itemsize
        if needed > reader.remaining:
            raise ModelFormatError(
                f"layer {i} rows/columns",
                f"{rows}x{cols} needs {needed} bytes but only {reader.remaining} remain",
            )
        weights = reader.doubles(rows * cols, f"layer {i} weights").reshape(rows, cols)
        biases = reader.doubles(rows, f"layer {i} biases")
        layers.append(Layer(weights, biases))
        expected_cols = rows

    if reader.remaining:
        raise ModelFormatError("trailing bytes", f"{reader.remaining} unread bytes after the last layer")

    try:
        return Model(glyphs, tuple(layers), alpha, output)
    except ConfigurationError as e:
        raise ModelFormatError("glyph labels", str(e)) from e


def save_model(model: Model, path: str | Path) -> None:
    """Write to a sibling file, then rename it over ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(encode_model(model))
    tmp.replace(path)
    logger.debug("Saved model (%d layers) to %s", len(model.layers), path)


def load_model(path: str | Path, output: OutputActivation = OutputActivation.SOFTMAX) -> Model:
    return decode_model(Path(path).read_bytes(), output)
