# farmbasket/fastapi/buyer_api.py
# FastAPI router that exposes the buyer session (basket, pickup dates, orders) to mobile/web clients.

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from farmbasket.errors import OrderFlowError
from farmbasket.fastapi.common import auth_identity, http_error
from farmbasket.models.buyer.order_models import MergeResolution, Order
from farmbasket.services.buyer.order_reconciler import MergeRequired
from farmbasket.services.buyer.session_service import BuyerSession

router = APIRouter(prefix="/api/v1/buyer", tags=["buyer"])

DATE_KEY_PATTERN = r"^\d{8}$"


# ======= Request bodies =======
class DateKeyRequest(BaseModel):
    date_key: str = Field(..., pattern=DATE_KEY_PATTERN)


class CheckoutRequest(BaseModel):
    date_key: Optional[str] = Field(default=None, pattern=DATE_KEY_PATTERN)


class AddItemRequest(BaseModel):
    article_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    pieces_count: int = -1


class QuantityRequest(BaseModel):
    quantity: Decimal


class ResolveConflictRequest(BaseModel):
    product_id: str
    resolution: MergeResolution


class CancelRequest(BaseModel):
    order_id: Optional[str] = None
    date_key: Optional[str] = Field(default=None, pattern=DATE_KEY_PATTERN)


class ProfileRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=80)
    phone: Optional[str] = Field(default=None, max_length=30)


# ======= Helpers =======
async def current_session(request: Request, identity: Dict[str, Any] = Depends(auth_identity)) -> BuyerSession:
    try:
        return await request.app.state.sessions.get(identity["userId"])
    except OrderFlowError as e:
        raise http_error(e)


def _state(session: BuyerSession) -> Dict[str, Any]:
    return session.current.model_dump(mode="json")


def _parse_date_key(session: BuyerSession, date_key: str):
    try:
        return session.schedule.parse_date_key(date_key)
    except ValueError:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": f"Invalid date key {date_key}"})


def _jsonable(result: Any) -> Any:
    if isinstance(result, MergeRequired):
        return {
            "merge_required": True,
            "existing_order": result.existing_order.model_dump(mode="json"),
            "conflicts": [c.model_dump(mode="json") for c in result.conflicts],
        }
    if isinstance(result, Order):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_jsonable(r) for r in result]
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


async def _run(session: BuyerSession, command: str, **params) -> Dict[str, Any]:
    try:
        result = await session.dispatch(command, **params)
    except OrderFlowError as e:
        raise http_error(e)
    return {"ok": True, "result": _jsonable(result), "state": _state(session)}


# ======= Routes =======
@router.get("/state")
async def get_state(session: BuyerSession = Depends(current_session)):
    return {"ok": True, "state": _state(session)}


@router.get("/pickup-dates")
async def get_pickup_dates(session: BuyerSession = Depends(current_session)):
    try:
        dates = await session.dispatch("load_available_dates")
    except OrderFlowError as e:
        raise http_error(e)

    schedule = session.schedule
    rows = [{
        "date_key": schedule.date_key(d),
        "pickup_date": d.isoformat(),
        "display": schedule.format_display_date(d),
        "deadline": schedule.edit_deadline(d).isoformat(),
        "time_left": schedule.format_time_until_deadline(d),
        "warning": schedule.deadline_warning_level(d).value,
    } for d in dates]
    return {"ok": True, "dates": rows}


@router.post("/pickup-date")
async def select_pickup_date(req: DateKeyRequest, session: BuyerSession = Depends(current_session)):
    return await _run(session, "select_pickup_date", pickup_date=_parse_date_key(session, req.date_key))


@router.post("/basket/items")
async def add_basket_item(req: AddItemRequest, session: BuyerSession = Depends(current_session)):
    return await _run(
        session, "add_article", article_id=req.article_id, quantity=req.quantity, pieces_count=req.pieces_count
    )


@router.patch("/basket/items/{product_id}")
async def update_basket_item(product_id: str, req: QuantityRequest, session: BuyerSession = Depends(current_session)):
    return await _run(session, "update_quantity", product_id=product_id, quantity=req.quantity)


@router.delete("/basket/items/{product_id}")
async def remove_basket_item(product_id: str, session: BuyerSession = Depends(current_session)):
    return await _run(session, "remove_item", product_id=product_id)


@router.delete("/basket")
async def clear_basket(session: BuyerSession = Depends(current_session)):
    return await _run(session, "start_new_order")


@router.post("/checkout")
async def checkout(req: Optional[CheckoutRequest] = None, session: BuyerSession = Depends(current_session)):
    pickup = None
    if req is not None and req.date_key:
        pickup = _parse_date_key(session, req.date_key)
    return await _run(session, "checkout", pickup_date=pickup)


@router.post("/merge/resolve")
async def resolve_merge_conflict(req: ResolveConflictRequest, session: BuyerSession = Depends(current_session)):
    return await _run(session, "resolve_merge_conflict", product_id=req.product_id, resolution=req.resolution)


@router.post("/merge/confirm")
async def confirm_merge(session: BuyerSession = Depends(current_session)):
    return await _run(session, "confirm_merge")


@router.post("/merge/dismiss")
async def dismiss_merge(session: BuyerSession = Depends(current_session)):
    return await _run(session, "dismiss_merge")


@router.post("/orders/{date_key}/{order_id}/load")
async def load_order(date_key: str, order_id: str, session: BuyerSession = Depends(current_session)):
    _parse_date_key(session, date_key)
    return await _run(session, "load_order", order_id=order_id, date_key=date_key)


@router.put("/order")
async def update_order(session: BuyerSession = Depends(current_session)):
    return await _run(session, "update_order")


@router.post("/order/cancel")
async def cancel_order(req: Optional[CancelRequest] = None, session: BuyerSession = Depends(current_session)):
    req = req or CancelRequest()
    return await _run(session, "cancel_order", order_id=req.order_id, date_key=req.date_key)


@router.post("/reorder")
async def reorder(req: DateKeyRequest, session: BuyerSession = Depends(current_session)):
    return await _run(session, "reorder_with_new_date", new_pickup_date=_parse_date_key(session, req.date_key))


@router.get("/orders")
async def order_history(session: BuyerSession = Depends(current_session)):
    return await _run(session, "load_order_history")


@router.patch("/profile")
async def save_profile(req: ProfileRequest, session: BuyerSession = Depends(current_session)):
    return await _run(session, "save_profile", display_name=req.display_name, phone=req.phone)


@router.post("/favourites/{article_id}/toggle")
async def toggle_favourite(article_id: str, session: BuyerSession = Depends(current_session)):
    return await _run(session, "toggle_favourite", article_id=article_id)
