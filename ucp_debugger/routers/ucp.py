from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from ucp_debugger.clients.ucp import UCPClient, UCPResult
from ucp_debugger.dependencies import get_ucp_client
from ucp_debugger.schemas.responses import UCPCallResponse

router = APIRouter()


def _to_response(result: UCPResult) -> UCPCallResponse:
    return UCPCallResponse(
        transaction_id=result.transaction_id,
        request_id=result.request_id,
        response_id=result.response_id,
        status_code=result.status_code,
        ok=result.ok,
        data=result.data,
        errors=result.errors,
    )


@router.post("/discover", response_model=UCPCallResponse)
async def discover(
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    """Fetch /.well-known/ucp from the target server."""
    return _to_response(await client.discover(transaction_id))


@router.get("/products", response_model=UCPCallResponse)
async def get_products(
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_products(transaction_id))


@router.get("/categories", response_model=UCPCallResponse)
async def get_categories(
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_categories(transaction_id))


@router.get("/categories/{category_id}/products", response_model=UCPCallResponse)
async def get_category_products(
    category_id: str,
    include_subcategories: bool = True,
    page: int = 1,
    per_page: int = 10,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_category_products(
        category_id, include_subcategories, page, per_page, transaction_id
    ))


@router.get("/products/search", response_model=UCPCallResponse)
async def search_products(
    q: str,
    category: Optional[str] = None,
    page: int = 1,
    per_page: int = 10,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.search_products(q, category, page, per_page, transaction_id))


@router.post("/checkout", response_model=UCPCallResponse)
async def create_checkout(
    request: Dict[str, Any] = Body(...),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.create_checkout(request, transaction_id))


@router.get("/checkout/{checkout_id}", response_model=UCPCallResponse)
async def get_checkout(
    checkout_id: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_checkout(checkout_id, transaction_id))


@router.patch("/checkout/{checkout_id}", response_model=UCPCallResponse)
async def update_checkout(
    checkout_id: str,
    request: Dict[str, Any] = Body(...),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.update_checkout(checkout_id, request, transaction_id))


@router.post("/checkout/{checkout_id}/complete", response_model=UCPCallResponse)
async def complete_checkout(
    checkout_id: str,
    request: Dict[str, Any] = Body(...),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    """
    Complete a checkout session.

    A successful completion moves the transaction to `completed`.
    """
    return _to_response(await client.complete_checkout(checkout_id, request, transaction_id))


@router.post("/checkout/{checkout_id}/cancel", response_model=UCPCallResponse)
async def cancel_checkout(
    checkout_id: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.cancel_checkout(checkout_id, transaction_id))


@router.get("/orders/{order_id}", response_model=UCPCallResponse)
async def get_order(
    order_id: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_order(order_id, transaction_id))


@router.post("/carts", response_model=UCPCallResponse)
async def create_cart(
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.create_cart(transaction_id))


@router.get("/carts/{cart_id}", response_model=UCPCallResponse)
async def get_cart(
    cart_id: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.get_cart(cart_id, transaction_id))


@router.delete("/carts/{cart_id}", response_model=UCPCallResponse)
async def delete_cart(
    cart_id: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.delete_cart(cart_id, transaction_id))


@router.post("/carts/{cart_id}/items", response_model=UCPCallResponse)
async def add_to_cart(
    cart_id: str,
    item: Dict[str, Any] = Body(...),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.add_to_cart(cart_id, item, transaction_id))


@router.patch("/carts/{cart_id}/items/{item_key}", response_model=UCPCallResponse)
async def update_cart_item(
    cart_id: str,
    item_key: str,
    quantity: int = Body(..., embed=True),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.update_cart_item(cart_id, item_key, quantity, transaction_id))


@router.delete("/carts/{cart_id}/items/{item_key}", response_model=UCPCallResponse)
async def remove_cart_item(
    cart_id: str,
    item_key: str,
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    return _to_response(await client.remove_cart_item(cart_id, item_key, transaction_id))


@router.post("/carts/{cart_id}/checkout", response_model=UCPCallResponse)
async def convert_cart_to_checkout(
    cart_id: str,
    addresses: Optional[Dict[str, Any]] = Body(None),
    transaction_id: Optional[str] = None,
    client: UCPClient = Depends(get_ucp_client),
):
    """Turn a cart into a checkout session (shipping/billing addresses optional)."""
    return _to_response(await client.convert_cart_to_checkout(cart_id, addresses, transaction_id))
