# kitchen_cost_engine/src/api/routes.py
from __future__ import annotations

import logging
from typing import Any, List, NoReturn, Optional
from zoneinfo import ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.api.schemas import (
    BulkRefreshRequest,
    CalculationResponse,
    IngredientCreateRequest,
    IngredientResponse,
    IngredientUpdateRequest,
    MakingCostResponse,
    OfferValidityRequest,
    OfferValidityResponse,
    PriceHistoryResponse,
    PriceRecordRequest,
    PriceRecordResponse,
    RecipeRequest,
    RecipeResponse,
    RunCycleRequest,
    SettingsResponse,
    SettingsUpdateRequest,
    ToggleAutoUpdateRequest,
)
from src.application.offer_validity import days_left, validity_label
from src.core.config import HISTORY_DEFAULT_DAYS
from src.domain.entities import utcnow
from src.domain.errors import CostingError, IncompatibleUnitError, NotFound, ValidationError

log = logging.getLogger("api.routes")
router = APIRouter()


# -------------------------
# Dependencies via app.state
# -------------------------
def get_usecases(request: Request):
    uc = getattr(request.app.state, "usecases", None)
    if uc is None:
        raise RuntimeError("usecases not initialized. Check app startup wiring.")
    return uc


def _fail(e: Exception, where: str) -> NoReturn:
    if isinstance(e, NotFound):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ValidationError, IncompatibleUnitError)):
        raise HTTPException(status_code=400, detail=str(e))
    log.exception("Processing %s error", where)
    raise HTTPException(status_code=500, detail=str(e))


# -------------------------
# Ingredients
# -------------------------
@router.post("/ingredients", response_model=IngredientResponse)
def create_ingredient(req: IngredientCreateRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return IngredientResponse.from_entity(uc.create_ingredient(req.model_dump()))
    except Exception as e:
        _fail(e, "/ingredients")


@router.get("/ingredients", response_model=List[IngredientResponse])
def list_ingredients(
    category: Optional[str] = None,
    include_inactive: bool = False,
    uc=Depends(get_usecases),
) -> Any:
    try:
        return [IngredientResponse.from_entity(i) for i in uc.list_ingredients(category, include_inactive)]
    except Exception as e:
        _fail(e, "/ingredients (list)")


@router.delete("/ingredients/{ingredient_id}", response_model=IngredientResponse)
def delete_ingredient(ingredient_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        return IngredientResponse.from_entity(uc.deactivate_ingredient(ingredient_id))
    except Exception as e:
        _fail(e, "/ingredients/{id} (delete)")


@router.get("/ingredients/{ingredient_id}", response_model=IngredientResponse)
def get_ingredient(ingredient_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        return IngredientResponse.from_entity(uc.get_ingredient(ingredient_id))
    except Exception as e:
        _fail(e, "/ingredients/{id}")


@router.put("/ingredients/{ingredient_id}", response_model=IngredientResponse)
def update_ingredient(ingredient_id: str, req: IngredientUpdateRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return IngredientResponse.from_entity(uc.update_ingredient(ingredient_id, req.model_dump(exclude_none=True)))
    except Exception as e:
        _fail(e, "/ingredients/{id} (update)")


@router.post("/ingredients/{ingredient_id}/prices", response_model=PriceRecordResponse)
def record_price(ingredient_id: str, req: PriceRecordRequest, uc=Depends(get_usecases)) -> Any:
    try:
        out = uc.record_manual_price(
            ingredient_id,
            req.price,
            source=req.source,
            recorded_at=req.recorded_at,
            market_name=req.market_name,
            notes=req.notes,
        )
    except Exception as e:
        _fail(e, "/ingredients/{id}/prices")
    result = out["result"]
    return PriceRecordResponse(
        entry=PriceHistoryResponse.from_entity(result.entry),
        live_updated=result.live_updated,
        alert=result.alert.to_dict() if result.alert else None,
        stale_recipes=out["stale_recipes"],
    )


@router.get("/ingredients/{ingredient_id}/price-history", response_model=List[PriceHistoryResponse])
def price_history(
    ingredient_id: str,
    days: int = Query(default=HISTORY_DEFAULT_DAYS),
    uc=Depends(get_usecases),
) -> Any:
    try:
        return [PriceHistoryResponse.from_entity(h) for h in uc.get_price_history(ingredient_id, days=days)]
    except Exception as e:
        _fail(e, "/ingredients/{id}/price-history")


@router.get("/ingredients/{ingredient_id}/price-trends")
def price_trends(
    ingredient_id: str,
    days: int = Query(default=HISTORY_DEFAULT_DAYS),
    uc=Depends(get_usecases),
) -> Any:
    try:
        trend = uc.get_price_trends(ingredient_id, days=days)
    except Exception as e:
        _fail(e, "/ingredients/{id}/price-trends")
    if trend is None:
        return {"ingredient_id": ingredient_id, "samples": 0}
    return trend.to_dict()


@router.post("/ingredients/{ingredient_id}/refresh-price")
async def refresh_price(ingredient_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        outcome = await uc.refresh_ingredient_price(ingredient_id)
        return outcome.to_dict()
    except Exception as e:
        _fail(e, "/ingredients/{id}/refresh-price")


@router.post("/ingredients/bulk-refresh-prices")
async def bulk_refresh(req: BulkRefreshRequest, uc=Depends(get_usecases)) -> Any:
    try:
        outcomes = await uc.bulk_refresh_prices(req.ingredient_ids)
    except Exception as e:
        _fail(e, "/ingredients/bulk-refresh-prices")
    return {"total": len(outcomes), "outcomes": [o.to_dict() for o in outcomes]}


@router.post("/ingredients/{ingredient_id}/toggle-auto-update", response_model=IngredientResponse)
def toggle_auto_update(
    ingredient_id: str,
    req: Optional[ToggleAutoUpdateRequest] = None,
    uc=Depends(get_usecases),
) -> Any:
    try:
        enabled = req.enabled if req else None
        return IngredientResponse.from_entity(uc.toggle_auto_update(ingredient_id, enabled))
    except Exception as e:
        _fail(e, "/ingredients/{id}/toggle-auto-update")


# -------------------------
# Settings
# -------------------------
@router.get("/price-settings", response_model=SettingsResponse)
def get_settings(uc=Depends(get_usecases)) -> Any:
    return SettingsResponse.from_entity(uc.get_price_settings())


@router.put("/price-settings", response_model=SettingsResponse)
def update_settings(req: SettingsUpdateRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return SettingsResponse.from_entity(uc.update_price_settings(req.model_dump(exclude_none=True)))
    except Exception as e:
        _fail(e, "/price-settings")


# -------------------------
# Recipes
# -------------------------
@router.post("/recipes", response_model=RecipeResponse)
def create_recipe(req: RecipeRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return RecipeResponse.from_entity(uc.create_recipe(req.model_dump()))
    except Exception as e:
        _fail(e, "/recipes")


@router.get("/recipes", response_model=List[RecipeResponse])
def list_recipes(uc=Depends(get_usecases)) -> Any:
    return [RecipeResponse.from_entity(r) for r in uc.list_recipes()]


@router.get("/recipes/menuitem/{menu_item_name}", response_model=RecipeResponse)
def recipe_by_menu_item(menu_item_name: str, uc=Depends(get_usecases)) -> Any:
    try:
        return RecipeResponse.from_entity(uc.get_recipe_by_menu_item(menu_item_name))
    except Exception as e:
        _fail(e, "/recipes/menuitem/{name}")


@router.get("/recipes/makingcost/{menu_item_name}", response_model=MakingCostResponse)
def making_cost(menu_item_name: str, uc=Depends(get_usecases)) -> Any:
    try:
        return uc.get_making_cost(menu_item_name)
    except Exception as e:
        _fail(e, "/recipes/makingcost/{name}")


@router.post("/recipes/calculate", response_model=CalculationResponse)
def calculate_recipe(req: RecipeRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return CalculationResponse.from_entity(uc.calculate_recipe_price(req.model_dump()))
    except Exception as e:
        _fail(e, "/recipes/calculate")


@router.get("/recipes/{recipe_id}", response_model=RecipeResponse)
def get_recipe(recipe_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        return RecipeResponse.from_entity(uc.get_recipe(recipe_id))
    except Exception as e:
        _fail(e, "/recipes/{id}")


@router.put("/recipes/{recipe_id}", response_model=RecipeResponse)
def update_recipe(recipe_id: str, req: RecipeRequest, uc=Depends(get_usecases)) -> Any:
    try:
        return RecipeResponse.from_entity(uc.update_recipe(recipe_id, req.model_dump()))
    except Exception as e:
        _fail(e, "/recipes/{id} (update)")


@router.delete("/recipes/{recipe_id}")
def delete_recipe(recipe_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        uc.delete_recipe(recipe_id)
    except Exception as e:
        _fail(e, "/recipes/{id} (delete)")
    return {"deleted": recipe_id}


@router.post("/recipes/{recipe_id}/recalculate", response_model=CalculationResponse)
def recalculate_recipe(recipe_id: str, uc=Depends(get_usecases)) -> Any:
    try:
        return CalculationResponse.from_entity(uc.recalculate_recipe(recipe_id))
    except Exception as e:
        _fail(e, "/recipes/{id}/recalculate")


# -------------------------
# Scheduler hook + offers
# -------------------------
@router.post("/price-updates/run")
async def run_price_updates(req: Optional[RunCycleRequest] = None, uc=Depends(get_usecases)) -> Any:
    req = req or RunCycleRequest()
    try:
        return await uc.run_price_update_cycle(req.now, recompute=req.recompute)
    except Exception as e:
        _fail(e, "/price-updates/run")


@router.post("/offers/validity", response_model=OfferValidityResponse)
def offer_validity(req: OfferValidityRequest) -> Any:
    now = req.now or utcnow()
    try:
        return OfferValidityResponse(
            days_left=days_left(req.valid_till, now, req.tz),
            label=validity_label(req.valid_till, now, req.tz),
        )
    except (CostingError, ZoneInfoNotFoundError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
