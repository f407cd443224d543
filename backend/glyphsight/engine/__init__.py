"""GlyphSight tile classification engine."""

from glyphsight.engine.config import ClassificationMethod, ClassifierOptions, FeatureScaling, SSIMOptions
from glyphsight.engine.ssim import SimilarityComponents, SSIMComparator
from glyphsight.engine.tile import Codebook, Glyph, GlyphProfile, Tile

__all__ = [
    "ClassificationMethod",
    "ClassifierOptions",
    "FeatureScaling",
    "SSIMOptions",
    "SSIMComparator",
    "SimilarityComponents",
    "Tile",
    "Glyph",
    "GlyphProfile",
    "Codebook",
]
