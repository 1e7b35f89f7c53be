import logging
from typing import Any, List, Optional, Protocol
from supabase import create_client, Client

from ..config import (
    ORDER_API_BASE_URL,
    ORDER_SOURCE,
    ORDERS_TABLE,
    STORE_CONFIG_TABLE,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
)
from ..core.exceptions import ConfigurationError, LocalStoreError
from ..core.models import StoreConfig

logger = logging.getLogger(__name__)


class LocalOrderStore(Protocol):
    def get_max_order_id(self, store_identifier: str) -> Optional[int]:
        ...


class StoreConfigSource(Protocol):
    def get_active_store_configs(self) -> List[StoreConfig]:
        ...


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class SupabaseClient:
    """Supabase client for the local order mirror and store configurations"""

    def __init__(self, client: Optional[Client] = None, page_size: int = 1000):
        """Initialize Supabase client"""
        self.page_size = page_size
        if client is not None:
            self.client = client
            return

        self.url = SUPABASE_URL
        self.key = SUPABASE_SERVICE_KEY  # Use service key for admin operations

        if not self.url or not self.key:
            raise ConfigurationError("Supabase URL and key must be set in environment variables")

        self.client: Client = create_client(self.url, self.key)
        logger.info("Supabase client initialized")

    def get_active_store_configs(self) -> List[StoreConfig]:
        """Active remote API configurations, one per store."""
        try:
            result = self.client.table(STORE_CONFIG_TABLE)\
                .select('*')\
                .eq('isActive', True)\
                .execute()
        except Exception as e:
            logger.error(f"Failed to fetch store configurations: {e}")
            raise LocalStoreError(f"Failed to fetch store configurations: {e}") from e

        configs = []
        for row in result.data or []:
            identifier = row.get('storeIdentifier')
            token = row.get('apiToken')
            if not identifier or not token:
                logger.warning(f"Skipping incomplete API configuration {row.get('id')}")
                continue
            configs.append(StoreConfig(
                identifier=identifier,
                store_name=row.get('storeName'),
                base_url=row.get('baseUrl') or ORDER_API_BASE_URL,
                api_token=token,
                is_active=bool(row.get('isActive', True)),
            ))
        return configs

    def get_max_order_id(self, store_identifier: str) -> Optional[int]:
        """
        Largest remote order ID mirrored locally for a store.

        The ID column holds text, so rows are paged through and compared as
        integers rather than trusting a lexicographic ORDER BY.
        """
        start = 0
        best: Optional[int] = None
        try:
            while True:
                result = self.client.table(ORDERS_TABLE)\
                    .select('ecoManagerId')\
                    .eq('storeIdentifier', store_identifier)\
                    .eq('source', ORDER_SOURCE)\
                    .not_.is_('ecoManagerId', 'null')\
                    .range(start, start + self.page_size - 1)\
                    .execute()

                rows = result.data or []
                for row in rows:
                    order_id = _to_int(row.get('ecoManagerId'))
                    if order_id is not None and (best is None or order_id > best):
                        best = order_id

                if len(rows) < self.page_size:
                    break
                start += self.page_size
        except Exception as e:
            logger.error(f"Failed to fetch last order ID for {store_identifier}: {e}")
            raise LocalStoreError(f"Failed to fetch last order ID for {store_identifier}: {e}") from e
        return best
