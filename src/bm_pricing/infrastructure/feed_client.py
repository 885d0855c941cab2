"""HTTP client for the external bond feed (home widgets endpoint).

Bonds are spread over two widget shapes:
  BOND_TILES          widget.data is a list of bonds
  PRODUCT_CATEGORIES  widget.data.bonds.data is a list of categories,
                      each with its own list of bonds under `data`
Records are de-duplicated by feed id (else ISIN + name).

When the feed is not configured or the request fails, a fixed fallback set
is returned tagged source="fallback" so callers never mistake it for live data.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

import httpx

from src.bm_common.datetime_utils import utc_now
from src.bm_common.enums import PriceSource
from src.bm_common.errors import FeedUnavailableError
from src.bm_pricing.domain.models import ExternalBond, FeedConfig, FeedSnapshot

logger = logging.getLogger(__name__)

WIDGET_BOND_TILES = "BOND_TILES"
WIDGET_PRODUCT_CATEGORIES = "PRODUCT_CATEGORIES"

FALLBACK_BONDS: tuple[ExternalBond, ...] = (
    ExternalBond(
        identifier="INE0NES07261",
        feed_id="1351",
        name="KEERTANA FINSERV PRIVATE LIMITED",
        yield_pct=13.7,
        coupon_pct=11.1,
        maturity=date(2027, 8, 19),
        face_value=9762.86,
    ),
    ExternalBond(
        identifier="INE01YL07383",
        feed_id="1322",
        name="EARLYSALARY SERVICES PRIVATE LIMITED",
        yield_pct=11.6,
        coupon_pct=10.7,
        maturity=date(2027, 3, 5),
        face_value=99444.04,
    ),
)


def flatten_widgets(payload: dict[str, Any]) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for widget in payload.get("widgets") or []:
        if not isinstance(widget, dict):
            continue
        widget_type = (widget.get("config") or {}).get("widget_type")
        data = widget.get("data")
        if widget_type == WIDGET_BOND_TILES and isinstance(data, list):
            records.extend(r for r in data if isinstance(r, dict))
        elif widget_type == WIDGET_PRODUCT_CATEGORIES and isinstance(data, dict):
            categories = (data.get("bonds") or {}).get("data")
            if not isinstance(categories, list):
                continue
            for category in categories:
                bonds = category.get("data") if isinstance(category, dict) else None
                if isinstance(bonds, list):
                    records.extend(r for r in bonds if isinstance(r, dict))

    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for record in records:
        key = record.get("id")
        key = str(key) if key is not None else f"{record.get('isin', '')}-{record.get('name', '')}"
        if key not in seen:
            seen.add(key)
            unique.append(record)
    return unique


def parse_bond(record: dict[str, Any]) -> ExternalBond | None:
    """None when yield, coupon, maturity or face value is missing or malformed."""
    yield_pct = record.get("listed_yield")
    coupon_pct = record.get("coupon_rate")
    maturity = record.get("maturity_date")
    face_value = record.get("face_value") or record.get("min_investment_per_unit")
    if yield_pct is None or coupon_pct is None or not maturity or face_value in (None, ""):
        return None
    try:
        return ExternalBond(
            identifier=record.get("isin") or None,
            feed_id=str(record["id"]) if record.get("id") is not None else None,
            name=str(record.get("name") or ""),
            yield_pct=float(yield_pct),
            coupon_pct=float(coupon_pct),
            maturity=date.fromisoformat(str(maturity)[:10]),
            face_value=float(face_value),
        )
    except (TypeError, ValueError):
        logger.debug("Skipping malformed feed record %r", record.get("id"))
        return None


def extract_bonds(payload: dict[str, Any]) -> tuple[ExternalBond, ...]:
    bonds = []
    for record in flatten_widgets(payload):
        bond = parse_bond(record)
        if bond is not None:
            bonds.append(bond)
    return tuple(bonds)


class BondFeedClient:
    def __init__(
        self,
        config: FeedConfig,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._client = client
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        cfg = self._config
        headers = {
            "Authorization": f"Bearer {cfg.bearer_token}",
            "Accept": "application/json, text/plain, */*",
            "x-user-id": cfg.user_id,
            "x-product-id": cfg.product_id,
            "channel": cfg.channel,
            "x-user-category": cfg.user_category,
            "Device-Platform": cfg.device_platform,
            "Cache-Control": "no-cache",
        }
        if cfg.pin_token:
            headers["x-pin-token"] = cfg.pin_token
        return headers

    def fallback_snapshot(self) -> FeedSnapshot:
        return FeedSnapshot(
            source=PriceSource.FALLBACK.value, bonds=FALLBACK_BONDS, fetched_at=self._clock()
        )

    async def fetch_bonds(self) -> FeedSnapshot:
        if not self._config.is_configured:
            logger.warning("Bond feed not configured, using fallback bond set")
            return self.fallback_snapshot()
        try:
            payload = await self.fetch_home()
        except FeedUnavailableError as e:
            logger.warning("%s; using fallback bond set", e.message)
            return self.fallback_snapshot()

        bonds = extract_bonds(payload)
        logger.info("Fetched %d bonds from feed", len(bonds))
        return FeedSnapshot(
            source=PriceSource.ASPERO.value, bonds=bonds, fetched_at=self._clock()
        )

    async def fetch_home(self) -> dict[str, Any]:
        if self._client is not None:
            return await self._get(self._client)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as http:
            return await self._get(http)

    async def _get(self, http: httpx.AsyncClient) -> dict[str, Any]:
        try:
            resp = await http.get(
                self._config.url, headers=self._headers(), timeout=self._config.timeout_seconds
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise FeedUnavailableError(f"timeout after {self._config.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise FeedUnavailableError(f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FeedUnavailableError(str(e) or type(e).__name__) from e
        except ValueError as e:
            raise FeedUnavailableError("malformed JSON response") from e

        if not isinstance(payload, dict):
            raise FeedUnavailableError("response is not a JSON object")
        return payload
