"""POST /api/classify and POST /api/compare: glyph selection and SSIM diagnostics."""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from glyphsight.config import Settings
from glyphsight.dependencies import get_model, get_settings, get_store
from glyphsight.engine.classifier import Classifier
from glyphsight.engine.config import ClassificationMethod, ClassifierOptions, SSIMOptions
from glyphsight.engine.errors import ConfigurationError
from glyphsight.engine.ssim import SSIMComparator
from glyphsight.engine.tile import Codebook
from glyphsight.memo.store import MemoStore
from glyphsight.models.requests import ClassifyRequest, CompareRequest
from glyphsight.models.responses import ClassifiedTile, ClassifyResponse, CompareResponse
from glyphsight.nn.model import Model

logger = logging.getLogger(__name__)

router = APIRouter()


def _build_classifier(
    req: ClassifyRequest, cfg: Settings, store: MemoStore, model: Model | None
) -> Classifier:
    options = ClassifierOptions(
        method=req.method,
        threads=cfg.threads,
        tolerance=cfg.nn_tolerance if req.tolerance is None else req.tolerance,
        seed=req.seed,
        feature_scaling=cfg.feature_scaling,
    )
    if req.method is ClassificationMethod.MODEL:
        if model is None:
            raise HTTPException(status_code=409, detail="No classifier model is loaded")
        codebook = Codebook([g.symbol for g in req.glyphs]) if req.glyphs else None
        return Classifier(codebook, model=model, options=options)

    subdivide = cfg.ssim_subdivide if req.subdivide is None else req.subdivide
    return Classifier(
        Codebook([g.to_glyph() for g in req.glyphs]),
        SSIMComparator(SSIMOptions(subdivide=subdivide)),
        store=store,
        options=options,
    )


@router.post("/classify", response_model=ClassifyResponse)
async def classify(
    req: ClassifyRequest,
    cfg: Settings = Depends(get_settings),
    store: MemoStore = Depends(get_store),
    model: Model | None = Depends(get_model),
) -> ClassifyResponse:
    start = time.perf_counter()
    try:
        classifier = _build_classifier(req, cfg, store, model)
        tiles = [t.to_tile() for t in req.tiles]
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    loop = asyncio.get_running_loop()
    try:
        with classifier:
            results = await loop.run_in_executor(None, classifier.classify_many, tiles)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    elapsed = (time.perf_counter() - start) * 1000
    logger.info("Classified %d tiles (%s) in %.0fms", len(tiles), req.method.value, elapsed)
    return ClassifyResponse(
        tiles=[ClassifiedTile(glyph=r.glyph, color=r.color) for r in results],
        method=req.method.value,
        processing_time_ms=elapsed,
    )


@router.post("/compare", response_model=CompareResponse)
async def compare(req: CompareRequest) -> CompareResponse:
    try:
        comparator = SSIMComparator(SSIMOptions(subdivide=req.subdivide))
        parts = comparator.components(req.a.to_tile(), req.b.to_tile())
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return CompareResponse(
        luminance=parts.luminance,
        contrast=parts.contrast,
        structure=parts.structure,
        index=parts.index,
    )
