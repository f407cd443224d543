"""GET /api/network: summary of the loaded classifier model."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from glyphsight.dependencies import get_model
from glyphsight.models.responses import NetworkInfoResponse
from glyphsight.nn.model import Model

router = APIRouter()


@router.get("/network", response_model=NetworkInfoResponse)
async def network(model: Model | None = Depends(get_model)) -> NetworkInfoResponse:
    if model is None:
        raise HTTPException(status_code=409, detail="No classifier model is loaded")
    return NetworkInfoResponse(
        glyphs=list(model.glyphs),
        alpha=model.alpha,
        feature_count=model.feature_count,
        layer_shapes=[(layer.rows, layer.cols) for layer in model.layers],
        output=model.output.value,
    )
