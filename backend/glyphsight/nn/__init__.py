"""Neural glyph classifier: model, binary codec, Adam and trainer."""

from glyphsight.nn.codec import decode_model, encode_model, load_model, save_model
from glyphsight.nn.model import Layer, Model, ModelInitParams, OutputActivation
from glyphsight.nn.trainer import Trainer, TrainingOutcome, TrainingResult

__all__ = [
    "Layer",
    "Model",
    "ModelInitParams",
    "OutputActivation",
    "encode_model",
    "decode_model",
    "save_model",
    "load_model",
    "Trainer",
    "TrainingOutcome",
    "TrainingResult",
]
