"""
Repository mixins for DuckDBStore.

Each mixin groups the queries one area of the API needs:
- StoresMixin: Store lookup
- SalesMixin: Order rows, refunds, products, categories, recent orders
- InsightsMixin: Daily summaries, cohorts, repeat purchase
- CustomersMixin: Idle customers, last orders, win-back, profiles
- DerivedMixin: Derived-table rebuild
"""
from core.repositories.stores import StoresMixin
from core.repositories.sales import SalesMixin
from core.repositories.insights import InsightsMixin
from core.repositories.customers import CustomersMixin
from core.repositories.derived import DerivedMixin

__all__ = [
    "StoresMixin",
    "SalesMixin",
    "InsightsMixin",
    "CustomersMixin",
    "DerivedMixin",
]
