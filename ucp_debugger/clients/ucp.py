"""
Outbound UCP REST client.

Every call is recorded in the correlation store:
  add_request before the network call, add_response once the outcome is known.
Protocol, HTTP and transport failures never raise; they come back as error
entries on the UCPResult and on the recorded response.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ucp_debugger.models import Action, HTTPDetails, ProtocolMessage
from ucp_debugger.services.correlation import TransactionStore

logger = logging.getLogger(__name__)


DEFAULT_PLATFORM_PROFILE = "https://ucp-browser.local/profile"


def generate_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex[:8]}"


def normalize_base_url(url: str) -> str:
    normalized = url.rstrip("/")
    if not normalized.startswith(("http://", "https://")):
        normalized = f"http://{normalized}"
    return normalized


def extract_errors(data: Any) -> List[ProtocolMessage]:
    """Protocol errors are the `messages` entries with type == "error"."""
    if not isinstance(data, dict):
        return []
    messages = data.get("messages")
    if not isinstance(messages, list):
        return []
    errors = []
    for entry in messages:
        if isinstance(entry, dict) and entry.get("type") == "error":
            errors.append(ProtocolMessage(
                type="error",
                code=str(entry.get("code", "unknown")),
                path=entry.get("path"),
                content=str(entry.get("content", "")),
                severity=entry.get("severity"),
            ))
    return errors


def quote_id(value: str) -> str:
    """Percent-encode one path segment; `/`, `?` and `#` included."""
    return quote(str(value), safe="")


def with_query(url: str, params: Dict[str, Any]) -> str:
    return str(httpx.URL(url, params=params))


def looks_like_html(data: Any) -> bool:
    return isinstance(data, str) and ("<!DOCTYPE" in data or "<html" in data)


class UCPResult:
    def __init__(
        self,
        transaction_id: str,
        request_id: str,
        response_id: Optional[str],
        status_code: Optional[int],
        data: Any,
        errors: List[ProtocolMessage],
    ):
        self.transaction_id = transaction_id
        self.request_id = request_id
        self.response_id = response_id
        self.status_code = status_code
        self.data = data
        self.errors = errors

    @property
    def ok(self) -> bool:
        return not self.errors


class UCPClient:
    def __init__(
        self,
        base_url: str,
        store: TransactionStore,
        http_client: Optional[httpx.AsyncClient] = None,
        platform_profile: str = DEFAULT_PLATFORM_PROFILE,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = normalize_base_url(base_url)
        self.store = store
        self.platform_profile = platform_profile
        self.api_key = api_key
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "UCPClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    @property
    def checkout_sessions_endpoint(self) -> str:
        return f"{self.base_url}/wp-json/ucp/v1/checkout/sessions"

    @property
    def carts_endpoint(self) -> str:
        return f"{self.base_url}/wp-json/ucp/v1/carts"

    @property
    def orders_endpoint(self) -> str:
        return f"{self.base_url}/wp-json/ucp/v1/orders"

    # ------------------------------------------------------------------
    # Discovery & catalog
    # ------------------------------------------------------------------
    @property
    def categories_endpoint(self) -> str:
        return f"{self.base_url}/wp-json/ucp/v1/categories"

    async def discover(self, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.DISCOVER, "GET", f"{self.base_url}/.well-known/ucp"
        )

    async def get_products(self, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.GET_PRODUCTS, "GET", f"{self.base_url}/products"
        )

    async def get_product(self, product_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.GET_PRODUCT, "GET",
            f"{self.base_url}/products/{quote_id(product_id)}",
        )

    async def get_categories(self, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.GET_CATEGORIES, "GET", self.categories_endpoint
        )

    async def get_category_products(
        self,
        category_id: str,
        include_subcategories: bool = True,
        page: int = 1,
        per_page: int = 10,
        transaction_id: Optional[str] = None,
    ) -> UCPResult:
        params = {
            "include_subcategories": str(include_subcategories).lower(),
            "page": page,
            "per_page": per_page,
        }
        return await self._call(
            transaction_id, Action.GET_CATEGORY_PRODUCTS, "GET",
            with_query(f"{self.categories_endpoint}/{quote_id(category_id)}/products", params),
        )

    async def search_products(
        self,
        query: str,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = 10,
        transaction_id: Optional[str] = None,
    ) -> UCPResult:
        params = {"q": query, "page": page, "per_page": per_page}
        if category:
            params["category"] = category
        return await self._call(
            transaction_id, Action.SEARCH_PRODUCTS, "GET",
            with_query(f"{self.base_url}/wp-json/ucp/v1/products/search", params),
        )

    # ------------------------------------------------------------------
    # Checkout lifecycle (transaction id defaults to the checkout session id)
    # ------------------------------------------------------------------
    async def create_checkout(
        self, request: Dict[str, Any], transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id, Action.CREATE_CHECKOUT, "POST",
            f"{self.base_url}/checkout-sessions", request,
        )

    async def get_checkout(self, checkout_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id or checkout_id, Action.GET_CHECKOUT, "GET",
            f"{self.checkout_sessions_endpoint}/{quote_id(checkout_id)}",
        )

    async def update_checkout(
        self, checkout_id: str, request: Dict[str, Any], transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id or checkout_id, Action.UPDATE_CHECKOUT, "PATCH",
            f"{self.checkout_sessions_endpoint}/{quote_id(checkout_id)}", request,
        )

    async def complete_checkout(
        self, checkout_id: str, request: Dict[str, Any], transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id or checkout_id, Action.COMPLETE_CHECKOUT, "POST",
            f"{self.checkout_sessions_endpoint}/{quote_id(checkout_id)}/complete", request,
        )

    async def cancel_checkout(self, checkout_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id or checkout_id, Action.CANCEL_CHECKOUT, "POST",
            f"{self.checkout_sessions_endpoint}/{quote_id(checkout_id)}/cancel",
            {"idempotency_key": str(uuid.uuid4())},
        )

    # ------------------------------------------------------------------
    # Carts & orders
    #
    # Item updates and removals are recorded as add_to_cart, cart deletion
    # as create_cart and cart conversion as create_checkout: the closed
    # Action set has no dedicated members for them.
    # ------------------------------------------------------------------
    async def create_cart(self, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(transaction_id, Action.CREATE_CART, "POST", self.carts_endpoint, {})

    async def get_cart(self, cart_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.GET_CART, "GET", f"{self.carts_endpoint}/{quote_id(cart_id)}"
        )

    async def add_to_cart(
        self, cart_id: str, item: Dict[str, Any], transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id, Action.ADD_TO_CART, "POST",
            f"{self.carts_endpoint}/{quote_id(cart_id)}/items", item,
        )

    async def update_cart_item(
        self, cart_id: str, item_key: str, quantity: int, transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id, Action.ADD_TO_CART, "PATCH",
            f"{self.carts_endpoint}/{quote_id(cart_id)}/items/{quote_id(item_key)}",
            {"quantity": quantity},
        )

    async def remove_cart_item(
        self, cart_id: str, item_key: str, transaction_id: Optional[str] = None
    ) -> UCPResult:
        return await self._call(
            transaction_id, Action.ADD_TO_CART, "DELETE",
            f"{self.carts_endpoint}/{quote_id(cart_id)}/items/{quote_id(item_key)}",
        )

    async def convert_cart_to_checkout(
        self,
        cart_id: str,
        addresses: Optional[Dict[str, Any]] = None,
        transaction_id: Optional[str] = None,
    ) -> UCPResult:
        return await self._call(
            transaction_id, Action.CREATE_CHECKOUT, "POST",
            f"{self.carts_endpoint}/{quote_id(cart_id)}/checkout", addresses or {},
        )

    async def delete_cart(self, cart_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.CREATE_CART, "DELETE", f"{self.carts_endpoint}/{quote_id(cart_id)}"
        )

    async def get_order(self, order_id: str, transaction_id: Optional[str] = None) -> UCPResult:
        return await self._call(
            transaction_id, Action.GET_ORDER, "GET", f"{self.orders_endpoint}/{quote_id(order_id)}"
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "UCP-Agent": f'profile="{self.platform_profile}"',
        }
        if self.api_key:
            headers["X-UCP-API-Key"] = self.api_key
        return headers

    async def _call(
        self,
        transaction_id: Optional[str],
        action: Action,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> UCPResult:
        transaction_id = transaction_id or generate_transaction_id()
        message_id = str(uuid.uuid4())
        headers = self._headers()

        request_id = self.store.add_request(
            transaction_id,
            message_id,
            action,
            body,
            http=HTTPDetails(method=method, url=url, headers=headers),
            server_url=self.base_url,
        )

        status_code = None
        response_headers = None
        status_text = None
        try:
            response = await self._http.request(method, url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            data: Any = None
            errors = [ProtocolMessage(
                code="TRANSPORT_ERROR", content=str(e) or e.__class__.__name__, severity="fatal",
            )]
        else:
            status_code = response.status_code
            status_text = response.reason_phrase
            response_headers = dict(response.headers)
            try:
                data = response.json()
            except ValueError:
                data = response.text
            errors = extract_errors(data)
            if status_code >= 400:
                errors.append(ProtocolMessage(
                    code=f"HTTP_{status_code}",
                    content=f"{action.value} failed with status {status_code}: {status_text}",
                ))
            elif looks_like_html(data):
                errors.append(ProtocolMessage(
                    code="HTML_RESPONSE",
                    content=f"{action.value} returned an HTML page instead of JSON",
                ))

        response_id = self.store.add_response(
            transaction_id,
            _response_message_id(data) or message_id,
            action,
            data,
            request_id,
            errors=errors or None,
            http=HTTPDetails(
                method=method, url=url, status=status_code,
                status_text=status_text, headers=response_headers,
            ),
        )
        return UCPResult(
            transaction_id=transaction_id,
            request_id=request_id,
            response_id=response_id,
            status_code=status_code,
            data=data,
            errors=errors,
        )


def _response_message_id(data: Any) -> Optional[str]:
    if isinstance(data, dict) and isinstance(data.get("context"), dict):
        message_id = data["context"].get("message_id")
        return str(message_id) if message_id else None
    return None
