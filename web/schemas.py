"""
Pydantic models for API endpoints.

Request body fields are all optional; the services check required fields
and answer 400 with a readable message.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class DuckDBStats(BaseModel):
    """DuckDB statistics."""
    status: str
    latency_ms: Optional[float] = None
    stores: Optional[int] = None
    customers: Optional[int] = None
    products: Optional[int] = None
    orders: Optional[int] = None
    order_items: Optional[int] = None
    refunds: Optional[int] = None
    date_range: Optional[Dict[str, Optional[str]]] = None
    db_size_mb: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Always ok while the process serves requests")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    duckdb: DuckDBStats


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class TimingStats(BaseModel):
    """Timing statistics for an operation."""
    count: int
    avg_ms: float
    max_ms: float
    p50_ms: Optional[float] = None
    p95_ms: Optional[float] = None


class MetricsResponse(BaseModel):
    """Application metrics response."""
    requests: Dict[str, int] = Field(default_factory=dict)
    errors: Dict[str, int] = Field(default_factory=dict)
    timing: Dict[str, TimingStats] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# STORES
# ═══════════════════════════════════════════════════════════════════════════════

class StoreResponse(BaseModel):
    """Store without its WooCommerce credentials."""
    id: str
    name: Optional[str] = None
    wooBaseUrl: Optional[str] = None
    createdAt: Optional[str] = None


class DefaultStoreResponse(BaseModel):
    id: str
    name: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# MOCK DASHBOARD
# ═══════════════════════════════════════════════════════════════════════════════

class KpiResponse(BaseModel):
    revenue: float
    orders: int
    aov: float
    units: int
    customers: int


class SalesPoint(BaseModel):
    date: str
    revenue: float
    orders: int


class SalesResponse(BaseModel):
    sales: List[SalesPoint]


class SegmentCount(BaseModel):
    segment: str
    customers: int


class SegmentsResponse(BaseModel):
    segments: List[SegmentCount]


class SegmentSummary(BaseModel):
    segment: str
    customers: int
    revenue: float
    avgValue: float


class HeatmapCell(BaseModel):
    recency: int
    frequency: int
    count: int
    score: int


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST BODIES
# ═══════════════════════════════════════════════════════════════════════════════

class KpiSnapshotRequest(BaseModel):
    """POST /integrations/kpi-snapshots."""
    storeId: Optional[Any] = None
    periodLabel: Optional[str] = None
    date: Optional[str] = None
    kpis: Optional[Dict[str, Any]] = None
    databaseId: Optional[str] = None


class GhlActionRequest(BaseModel):
    """POST /customers/ghl-action."""
    contactId: Optional[Any] = None
    action: Optional[Any] = None
    tags: Optional[Any] = None
    locationId: Optional[Any] = None


class AssistantQueryRequest(BaseModel):
    """POST /assistant/query."""
    message: Optional[Any] = None
    storeId: Optional[Any] = None
    filters: Optional[Dict[str, Any]] = None
    history: Optional[List[Any]] = None
    mock: Optional[Any] = None


class AssistantAnswer(BaseModel):
    answer: Optional[str] = None
    dataUsed: List[Dict[str, Any]] = Field(default_factory=list)
