"""Merchant directory: seeded static catalog and the merchant registry HTTP client"""

from typing import Dict, Iterable, List, Optional

import httpx

from spendguard.config import settings
from spendguard.domain.exceptions import MerchantDirectoryError, MerchantNotFoundError
from spendguard.domain.models import Merchant, MerchantCategory
from spendguard.domain.reference import SEED_MERCHANTS


def merchant_from_payload(data: dict) -> Merchant:
    """Parse a registry merchant document; raises KeyError/ValueError/TypeError on bad data"""
    return Merchant(
        merchant_id=data["merchant_id"],
        name=data["name"],
        classification_code=str(data["mcc"]),
        category=MerchantCategory(data["category"]),
        category_label=data.get("category_label", data["category"]),
        city=data["city"],
        region=data.get("region", ""),
        latitude=float(data["lat"]),
        longitude=float(data["lng"]),
        certification_tier=int(data["tier"]),
        certified=bool(data.get("certified", False)),
        risk_score=float(data.get("risk_score", 0.0)),
        product_tags=tuple(data.get("product_tags", ())),
    )


def merchant_to_payload(merchant: Merchant) -> dict:
    return {
        "merchant_id": merchant.merchant_id,
        "name": merchant.name,
        "mcc": merchant.classification_code,
        "category": merchant.category.value,
        "category_label": merchant.category_label,
        "city": merchant.city,
        "region": merchant.region,
        "lat": merchant.latitude,
        "lng": merchant.longitude,
        "tier": merchant.certification_tier,
        "certified": merchant.certified,
        "risk_score": merchant.risk_score,
        "product_tags": list(merchant.product_tags),
    }


class StaticMerchantDirectory:
    """Read-only in-process catalog (defaults to the seeded merchants)"""

    def __init__(self, merchants: Optional[Iterable[Merchant]] = None):
        source = SEED_MERCHANTS if merchants is None else merchants
        self._merchants: Dict[str, Merchant] = {m.merchant_id: m for m in source}

    def get(self, merchant_id: str) -> Merchant:
        merchant = self._merchants.get(merchant_id)
        if merchant is None:
            raise MerchantNotFoundError(f"Merchant {merchant_id} not found")
        return merchant

    def list_all(self) -> List[Merchant]:
        return list(self._merchants.values())


class MerchantRegistryClient:
    """Client for the external merchant registry API"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or settings.merchant_registry_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def get(self, merchant_id: str) -> Merchant:
        """
        Fetch one merchant.

        Raises:
            MerchantNotFoundError: registry answered 404
            MerchantDirectoryError: on timeout, other HTTP errors, or invalid response
        """
        with self._client() as client:
            try:
                response = client.get(f"/merchants/{merchant_id}")
                if response.status_code == 404:
                    raise MerchantNotFoundError(f"Merchant {merchant_id} not found")
                response.raise_for_status()
                return merchant_from_payload(response.json())

            except httpx.TimeoutException as e:
                raise MerchantDirectoryError(f"Merchant registry timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise MerchantDirectoryError(f"Merchant registry error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise MerchantDirectoryError(f"Merchant registry unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise MerchantDirectoryError(f"Invalid merchant data from registry: {e}") from e

    def list_all(self) -> List[Merchant]:
        with self._client() as client:
            try:
                response = client.get("/merchants")
                response.raise_for_status()
                return [merchant_from_payload(m) for m in response.json().get("merchants", [])]

            except httpx.TimeoutException as e:
                raise MerchantDirectoryError(f"Merchant registry timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise MerchantDirectoryError(f"Merchant registry error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise MerchantDirectoryError(f"Merchant registry unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise MerchantDirectoryError(f"Invalid merchant data from registry: {e}") from e
