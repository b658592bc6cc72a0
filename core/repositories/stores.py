"""DuckDBStore store lookup methods."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class StoresMixin:

    async def list_stores(self) -> List[Dict[str, Any]]:
        """Public store rows, oldest first. Woo credentials are not selected."""
        return await self._fetch_dicts("""
            SELECT id, name, woo_base_url, created_at
            FROM stores
            ORDER BY created_at ASC, id ASC
        """)

    async def get_default_store(self) -> Optional[Dict[str, Any]]:
        rows = await self._fetch_dicts("""
            SELECT id, name FROM stores
            ORDER BY created_at ASC, id ASC
            LIMIT 1
        """)
        return rows[0] if rows else None

    async def get_store_record(self, store_id: str) -> Optional[Dict[str, Any]]:
        """Full store row including Woo credentials (sync only)."""
        rows = await self._fetch_dicts(
            "SELECT * FROM stores WHERE id = ?", [store_id]
        )
        return rows[0] if rows else None

    async def list_store_ids(self) -> List[str]:
        rows = await self._fetch_all("SELECT id FROM stores ORDER BY created_at ASC, id ASC")
        return [r[0] for r in rows]
