"""
Drop-shipping fulfillment provider API client.

Wraps the provider's REST API (CJ Dropshipping API 2.0 compatible):
- access token obtained by email/password login, refreshed before expiry
- optional request signing with user id / key / secret
- every call answers with a tagged ProviderSuccess / ProviderFailure result

The client never retries; callers decide.
"""
import hashlib
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse, urlunparse

import requests


DEFAULT_BASE_URL = "https://developers.cjdropshipping.com/api2.0"
LEGACY_HOSTS = {"api.cjdropshipping.com", "api2.cjdropshipping.com"}
USER_AGENT = "OrderSync/1.0"
TOKEN_EXPIRY_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class ProviderSuccess:
    data: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ProviderFailure:
    message: str

    @property
    def ok(self) -> bool:
        return False


ProviderResult = Union[ProviderSuccess, ProviderFailure]


@dataclass
class ShippingAddress:
    country_code: str
    province: str
    city: str
    address: str
    zip: str
    phone: str
    full_name: str
    country: str = ""
    address2: Optional[str] = None


@dataclass
class OrderLine:
    vid: str
    quantity: int


@dataclass
class CreateOrderRequest:
    order_number: str
    shipping_address: ShippingAddress
    products: List[OrderLine]
    remark: str = ""
    logistic_name: Optional[str] = None


@dataclass
class CreatedOrder:
    order_id: Optional[str]
    order_number: Optional[str]
    order_status: str
    tracking_number: Optional[str] = None
    logistic_name: Optional[str] = None


@dataclass
class OrderDetail:
    order_id: Optional[str]
    order_number: Optional[str]
    order_status: Optional[str]
    track_number: Optional[str] = None
    tracking_url: Optional[str] = None
    logistic_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ShippingMethod:
    logistic_name: str
    price: Decimal
    aging: str = ""


@dataclass
class TrackingEvent:
    tracking_number: str
    logistic_name: Optional[str] = None
    tracking_from: Optional[str] = None
    tracking_to: Optional[str] = None
    delivery_day: Optional[str] = None
    delivery_time: Optional[str] = None
    tracking_status: Optional[str] = None
    last_mile_carrier: Optional[str] = None
    last_track_number: Optional[str] = None


@dataclass
class _Tokens:
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime


def normalize_base_url(raw: Optional[str]) -> str:
    base = (raw or "").strip() or DEFAULT_BASE_URL
    if not re.match(r"^https?://", base, re.IGNORECASE):
        base = f"https://{base}"
    parsed = urlparse(base)
    if parsed.hostname in LEGACY_HOSTS:
        netloc = "developers.cjdropshipping.com" + (f":{parsed.port}" if parsed.port else "")
        base = urlunparse(parsed._replace(netloc=netloc))
    base = base.rstrip("/")
    if not re.search(r"/api2\.0$", base, re.IGNORECASE):
        base = base + "/api2.0"
    return base


def consignee_id_from_phone(phone: Optional[str]) -> str:
    """The provider requires a 13 digit consignee id without separators."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) >= 13:
        return digits[:13]
    return digits.rjust(13, "0")


def _parse_price(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value not in (None, "") else "0"))
    except InvalidOperation:
        return Decimal("0")


def _parse_expiry(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    # unknown expiry: treat as already expired
    return datetime.now(timezone.utc)


class FulfillmentProviderClient:
    """HTTP client for the external fulfillment provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        email: str = "",
        password: str = "",
        user_id: str = "",
        key: str = "",
        secret: str = "",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.email = email
        self.password = password
        self.user_id = user_id
        self.key = key
        self.secret = secret
        self.timeout = timeout
        self.auth_timeout = min(timeout, 15)
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json", "User-Agent": USER_AGENT})
        self._tokens: Optional[_Tokens] = None
        self._token_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "FulfillmentProviderClient":
        return cls(
            config.provider_api_url,
            email=config.provider_email,
            password=config.provider_password,
            user_id=config.provider_user_id,
            key=config.provider_key,
            secret=config.provider_secret,
            timeout=config.provider_timeout,
        )

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------
    def _signature(self, timestamp: str) -> str:
        message = f"{self.user_id}{timestamp}{self.key}{self.secret}"
        return hashlib.sha256(message.encode("utf-8")).hexdigest()

    @staticmethod
    def _expired(expires_at: datetime) -> bool:
        return datetime.now(timezone.utc) >= expires_at - TOKEN_EXPIRY_SKEW

    def _store_tokens(self, data: Dict[str, Any], previous: Optional[_Tokens] = None) -> None:
        if not data.get("accessToken"):
            raise requests.RequestException("Provider authentication returned no access token")
        refresh_token = data.get("refreshToken") or (previous.refresh_token if previous else "")
        refresh_expiry = data.get("refreshTokenExpiryDate")
        self._tokens = _Tokens(
            access_token=data["accessToken"],
            access_expires_at=_parse_expiry(data.get("accessTokenExpiryDate")),
            refresh_token=refresh_token,
            refresh_expires_at=(
                _parse_expiry(refresh_expiry) if refresh_expiry or not previous else previous.refresh_expires_at
            ),
        )

    def _auth_post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._http.post(f"{self.base_url}{path}", json=payload, timeout=self.auth_timeout)
        try:
            body = response.json()
        except ValueError:
            raise requests.RequestException(f"Invalid authentication response (HTTP {response.status_code})") from None
        if not isinstance(body, dict):
            raise requests.RequestException("Invalid authentication response")
        if not (body.get("result") or body.get("success")) or not body.get("data"):
            raise requests.RequestException(f"Provider authentication failed: {body.get('message') or 'Unknown error'}")
        return body["data"]

    def _login(self) -> None:
        if not self.email or not self.password:
            raise requests.RequestException("Provider credentials are not configured.")
        data = self._auth_post("/v1/authentication/getAccessToken", {"email": self.email, "password": self.password})
        self._store_tokens(data)
        self.logger.info("Provider access token obtained")

    def _refresh(self) -> None:
        previous = self._tokens
        data = self._auth_post("/v1/authentication/refreshAccessToken", {"refreshToken": previous.refresh_token})
        self._store_tokens(data, previous)
        self.logger.info("Provider access token refreshed")

    def _access_token(self) -> str:
        with self._token_lock:
            tokens = self._tokens
            if tokens is None or self._expired(tokens.refresh_expires_at):
                self._login()
            elif self._expired(tokens.access_expires_at):
                self._refresh()
            return self._tokens.access_token

    def _headers(self) -> Dict[str, str]:
        headers = {"CJ-Access-Token": self._access_token()}
        if self.user_id and self.key and self.secret:
            timestamp = str(int(time.time()))
            headers["CJ-Access-Timestamp"] = timestamp
            headers["CJ-Access-Sign"] = self._signature(timestamp)
        return headers

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def _call(self, method: str, path: str, fallback_error: str, **kwargs) -> ProviderResult:
        """Run one API call and unwrap the provider envelope."""
        try:
            response = self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
            body = response.json()
        except requests.RequestException as exc:
            self.logger.warning("Provider call %s %s failed: %s", method, path, exc)
            return ProviderFailure(str(exc) or "API request failed")
        except ValueError:
            return ProviderFailure(f"Invalid response from provider (HTTP {response.status_code})")

        if not isinstance(body, dict):
            return ProviderFailure("Invalid response from provider")
        if body.get("result") or body.get("success"):
            return ProviderSuccess(body.get("data"))
        return ProviderFailure(body.get("message") or fallback_error)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def create_order(self, request: CreateOrderRequest) -> ProviderResult:
        addr = request.shipping_address
        raw_code = (addr.country_code or "").strip().upper()
        country_code = raw_code if len(raw_code) == 2 else "ZA"
        body: Dict[str, Any] = {
            "orderNumber": request.order_number,
            "shippingCountryCode": country_code,
            "shippingCountry": (addr.country or "").strip() or country_code,
            "shippingProvince": addr.province or "",
            "shippingCity": addr.city or "",
            "shippingAddress": addr.address or "",
            "shippingZip": addr.zip or "",
            "shippingPhone": addr.phone or "",
            "shippingCustomerName": addr.full_name or "",
            "fromCountryCode": "CN",
            "remark": request.remark or "",
            "payType": 3,
            "shopLogisticsType": 2,
            "consigneeID": consignee_id_from_phone(addr.phone),
            "products": [
                {"vid": line.vid, "quantity": line.quantity, "storeLineItemId": f"line-{request.order_number}-{i}"}
                for i, line in enumerate(request.products)
            ],
            "logisticName": request.logistic_name or "",
        }
        if addr.address2:
            body["shippingAddress2"] = addr.address2

        result = self._call("POST", "/v1/shopping/order/createOrderV2", "Failed to create order", json=body)
        if not result.ok:
            return result
        d = result.data or {}
        if not d.get("orderId"):
            return ProviderFailure("Provider accepted the order but returned no order id")
        return ProviderSuccess(
            CreatedOrder(
                order_id=d.get("orderId"),
                order_number=d.get("orderNum") or request.order_number,
                order_status=d.get("orderStatus") or "Created",
                tracking_number=d.get("trackNumber"),
                logistic_name=d.get("logisticName"),
            )
        )

    def get_order_detail(self, external_order_id: str) -> ProviderResult:
        result = self._call(
            "GET", "/v1/shopping/order/getOrderDetail", "Failed to get order detail", params={"orderId": external_order_id}
        )
        if not result.ok:
            return result
        d = result.data
        if not isinstance(d, dict):
            return ProviderFailure("Provider returned no order detail")
        return ProviderSuccess(
            OrderDetail(
                order_id=d.get("orderId"),
                order_number=d.get("orderNum"),
                order_status=d.get("orderStatus"),
                track_number=(d.get("trackNumber") or "").strip() or None,
                tracking_url=(d.get("trackingUrl") or "").strip() or None,
                logistic_name=d.get("logisticName"),
                raw=d,
            )
        )

    def get_shipping_methods(
        self, products: List[OrderLine], end_country_code: str, start_country_code: str = "CN"
    ) -> ProviderResult:
        if not products:
            return ProviderSuccess([])
        result = self._call(
            "POST",
            "/v1/logistic/freightCalculate",
            "Failed to get shipping methods",
            json={
                "startCountryCode": start_country_code or "CN",
                "endCountryCode": end_country_code,
                "products": [{"vid": p.vid, "quantity": p.quantity} for p in products],
            },
        )
        if not result.ok:
            return result
        rows = result.data if isinstance(result.data, list) else []
        return ProviderSuccess(
            [
                ShippingMethod(
                    logistic_name=row.get("logisticName") or row.get("logisticNameEn") or "Shipping",
                    price=_parse_price(row.get("logisticPrice", row.get("logisticPriceEn"))),
                    aging=row.get("logisticAging") or row.get("logisticTime") or "",
                )
                for row in rows
                if isinstance(row, dict)
            ]
        )

    def get_product(self, product_id: str) -> ProviderResult:
        result = self._call("GET", "/v1/product/query", "Failed to fetch product", params={"pid": product_id})
        if result.ok and not result.data:
            return ProviderFailure("Product not found")
        return result

    def get_product_variants(self, product_id: str) -> ProviderResult:
        result = self._call("GET", "/v1/product/variant/query", "Failed to fetch variants", params={"pid": product_id})
        if not result.ok:
            return result
        return ProviderSuccess(result.data if isinstance(result.data, list) else [])

    def get_track_info(self, track_number: str) -> ProviderResult:
        result = self._call(
            "GET", "/v1/logistic/trackInfo", "Failed to fetch tracking", params={"trackNumber": track_number}
        )
        if not result.ok:
            return result
        rows = result.data if isinstance(result.data, list) else ([result.data] if result.data else [])
        return ProviderSuccess(
            [
                TrackingEvent(
                    tracking_number=row.get("trackingNumber") or track_number,
                    logistic_name=row.get("logisticName"),
                    tracking_from=row.get("trackingFrom"),
                    tracking_to=row.get("trackingTo"),
                    delivery_day=row.get("deliveryDay"),
                    delivery_time=row.get("deliveryTime"),
                    tracking_status=row.get("trackingStatus"),
                    last_mile_carrier=row.get("lastMileCarrier"),
                    last_track_number=row.get("lastTrackNumber"),
                )
                for row in rows
                if isinstance(row, dict)
            ]
        )
