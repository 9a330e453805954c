"""CMDB Pydantic v2 data models."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Criticality(str, Enum):
    """Business criticality of a CI, relationship or service."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class DiscoveryType(str, Enum):
    """Kinds of discovery probe."""
    NETWORK = "Network"
    WINDOWS = "Windows"
    LINUX = "Linux"
    CLOUD = "Cloud"
    DATABASE = "Database"


class DiscoveryRunStatus(str, Enum):
    """Lifecycle of a discovery run."""
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class DiscoveredItemStatus(str, Enum):
    """Lifecycle of a discovered item."""
    NEW = "New"
    PROCESSED = "Processed"
    ERROR = "Error"


class ProcessingAction(str, Enum):
    """What reconciliation did with a discovered item."""
    CREATED = "created"
    UPDATED = "updated"
    MANUAL_REVIEW = "manual_review"


class RelationshipDirection(str, Enum):
    """Which edges to follow from a CI."""
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


class ConflictResolution(str, Enum):
    """Which side wins when inventory and CMDB disagree."""
    CMDB_WINS = "cmdb_wins"
    INVENTORY_WINS = "inventory_wins"
    NEWEST_WINS = "newest_wins"


class SyncStatus(str, Enum):
    """Result of the last inventory sync of a mapping."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Configuration items
# ---------------------------------------------------------------------------


class CIType(BaseModel):
    """A configuration item type (reference data)."""
    id: str = Field(..., pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str
    category: str = "general"
    default_status: str = "Active"
    is_active: bool = True

    model_config = {"from_attributes": True}


class ConfigurationItem(BaseModel):
    """A node of the CMDB graph."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ci_id: str = Field(..., pattern=r"^CI\d{6}$")
    name: str
    display_name: str | None = None
    description: str | None = None
    ci_type: str
    ci_sub_type: str | None = None
    ci_status: str = "Active"
    criticality: Criticality = Criticality.MEDIUM
    environment: str | None = None
    serial_number: str | None = None
    asset_tag: str | None = None
    model: str | None = None
    manufacturer: str | None = None
    vendor: str | None = None
    location: str | None = None
    department: str | None = None
    owner: str | None = None
    purchase_date: str | None = None
    warranty_expiry_date: str | None = None
    custom_fields: dict[str, Any] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_discovered: bool = False
    discovery_source: str | None = None
    first_discovered_date: datetime | None = None
    last_discovered_date: datetime | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"from_attributes": True}


class CICreate(BaseModel):
    """Request to create a configuration item manually."""
    name: str = Field(..., min_length=1, max_length=255)
    ci_type: str
    display_name: str | None = None
    description: str | None = None
    ci_sub_type: str | None = None
    ci_status: str | None = None
    criticality: Criticality = Criticality.MEDIUM
    environment: str | None = None
    serial_number: str | None = None
    asset_tag: str | None = None
    model: str | None = None
    manufacturer: str | None = None
    vendor: str | None = None
    location: str | None = None
    department: str | None = None
    owner: str | None = None
    purchase_date: str | None = None
    warranty_expiry_date: str | None = None
    custom_fields: dict[str, Any] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None


class CIUpdate(BaseModel):
    """Partial update of a configuration item; only set fields are applied."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    display_name: str | None = None
    description: str | None = None
    ci_type: str | None = None
    ci_sub_type: str | None = None
    ci_status: str | None = None
    criticality: Criticality | None = None
    environment: str | None = None
    serial_number: str | None = None
    asset_tag: str | None = None
    model: str | None = None
    manufacturer: str | None = None
    vendor: str | None = None
    location: str | None = None
    department: str | None = None
    owner: str | None = None
    purchase_date: str | None = None
    warranty_expiry_date: str | None = None
    custom_fields: dict[str, Any] | None = None
    attributes: dict[str, Any] | None = None
    updated_by: str | None = None


class CIListResponse(BaseModel):
    """Paginated list of configuration items."""
    items: list[ConfigurationItem]
    total: int
    page: int
    page_size: int


class AuditLogEntry(BaseModel):
    """One row of the CI audit trail."""
    ci_id: str
    operation: str
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    changed_by: str | None = None
    timestamp: datetime


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


class RelationshipType(BaseModel):
    """A typed edge definition with optional CI type constraints."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str | None = None
    source_ci_type_constraint: str | None = None
    target_ci_type_constraint: str | None = None
    allow_multiple: bool = True

    model_config = {"from_attributes": True}


class RelationshipTypeCreate(BaseModel):
    """Request to create a relationship type."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    source_ci_type_constraint: str | None = None
    target_ci_type_constraint: str | None = None
    allow_multiple: bool = True


class Relationship(BaseModel):
    """A directed edge between two configuration items."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_ci_id: str
    target_ci_id: str
    relationship_type_id: str
    relationship_type_name: str | None = None
    description: str | None = None
    criticality: Criticality = Criticality.MEDIUM
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"from_attributes": True}


class RelationshipCreate(BaseModel):
    """Request to create a relationship.

    ``source_ci_id`` and ``target_ci_id`` accept either the opaque id or the
    ``CI000000`` business key.
    """
    source_ci_id: str = Field(..., min_length=1)
    target_ci_id: str = Field(..., min_length=1)
    relationship_type_id: str = Field(..., min_length=1)
    description: str | None = None
    criticality: Criticality = Criticality.MEDIUM
    created_by: str | None = None


class RelatedRelationship(Relationship):
    """A relationship seen from one CI, annotated with the other side."""
    direction: RelationshipDirection
    related_ci: ConfigurationItem


class CycleValidation(BaseModel):
    """Outcome of a circular-dependency check for a proposed edge."""
    has_circular_dependency: bool
    validation_passed: bool


class CycleValidationRequest(BaseModel):
    """Proposed edge to check for circular dependencies."""
    source_ci_id: str
    target_ci_id: str


# ---------------------------------------------------------------------------
# Business services and impact analysis
# ---------------------------------------------------------------------------


class BusinessService(BaseModel):
    """A business service supported by one or more CIs."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str | None = None
    criticality: Criticality = Criticality.MEDIUM

    model_config = {"from_attributes": True}


class BusinessServiceCreate(BaseModel):
    """Request to create a business service."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    criticality: Criticality = Criticality.MEDIUM


class BusinessServiceLink(BaseModel):
    """Request to link a CI to a business service."""
    ci_id: str
    criticality: Criticality = Criticality.MEDIUM


class ImpactedCI(BaseModel):
    """A CI reached by impact analysis."""
    ci: ConfigurationItem
    depth: int = Field(..., ge=1)
    impact_type: Criticality


class ImpactLevels(BaseModel):
    """Impacted CIs bucketed by traversal depth."""
    direct: list[ImpactedCI] = Field(default_factory=list)
    indirect: list[ImpactedCI] = Field(default_factory=list)
    extended: list[ImpactedCI] = Field(default_factory=list)


class ServiceImpactedCI(BaseModel):
    """A CI under a business service, with the join criticality."""
    ci: ConfigurationItem
    criticality: Criticality


class BusinessServiceImpact(BaseModel):
    """Aggregated impact on one business service."""
    service: BusinessService
    impacted_cis: list[ServiceImpactedCI] = Field(default_factory=list)
    criticality_level: Criticality = Criticality.LOW


class ImpactAnalysis(BaseModel):
    """Result of analyzing the failure impact of a root CI."""
    root_ci: ConfigurationItem
    impact_levels: ImpactLevels
    business_service_impact: list[BusinessServiceImpact] = Field(default_factory=list)
    total_impacted_cis: int = 0
    analysis_depth: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DependencyTreeNode(BaseModel):
    """A node of a dependency tree; diamonds appear once per path."""
    ci: ConfigurationItem
    relationship: Relationship | None = None
    direction: RelationshipDirection | None = None
    children: list[DependencyTreeNode] = Field(default_factory=list)


DependencyTreeNode.model_rebuild()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class DiscoveryConfig(BaseModel):
    """Request to start a discovery run."""
    discovery_type: DiscoveryType
    schedule_id: str | None = None
    scope_configuration: dict[str, Any] = Field(default_factory=dict)
    auto_process: bool = True
    auto_create: bool = True


class DiscoveryRun(BaseModel):
    """A single execution of a discovery probe."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    schedule_id: str | None = None
    discovery_type: DiscoveryType
    status: DiscoveryRunStatus = DiscoveryRunStatus.RUNNING
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    items_discovered: int = 0
    items_updated: int = 0
    items_created: int = 0
    items_failed: int = 0
    error_message: str | None = None

    model_config = {"from_attributes": True}


class DiscoveredItem(BaseModel):
    """One raw observation captured by a discovery run."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    discovered_data: dict[str, Any]
    fingerprint: str
    status: DiscoveredItemStatus = DiscoveredItemStatus.NEW
    ci_id: str | None = None
    processing_notes: str | None = None
    discovered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProcessRequest(BaseModel):
    """Options for reconciling a single discovered item."""
    auto_create: bool = True


class ProcessingOutcome(BaseModel):
    """Result of reconciling a discovered item."""
    item_id: str
    status: DiscoveredItemStatus
    action: ProcessingAction
    ci: ConfigurationItem | None = None


class DiscoveryScheduleCreate(BaseModel):
    """Request to create a discovery schedule."""
    name: str = Field(..., min_length=1, max_length=255)
    discovery_type: DiscoveryType
    cron_expression: str | None = None
    scope_configuration: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class DiscoverySchedule(DiscoveryScheduleCreate):
    """A stored discovery schedule."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    next_run_date: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Inventory integration
# ---------------------------------------------------------------------------


class InventoryAsset(BaseModel):
    """An asset record owned by the inventory system."""
    id: str
    asset_tag: str | None = None
    serial_number: str | None = None
    model: str | None = None
    status: str | None = None
    vendor_id: str | None = None
    location_id: str | None = None
    department: str | None = None
    assigned_to_user_id: str | None = None
    purchase_date: str | None = None
    warranty_expiry: str | None = None
    custom_fields: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class MappingCreate(BaseModel):
    """Request to map an inventory asset to a CI."""
    ci_id: str
    inventory_asset_id: str
    mapping_type: str = "direct"
    relationship: str | None = None
    sync_enabled: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.INVENTORY_WINS
    field_mapping: dict[str, str] | None = None
    created_by: str | None = None


class MappingUpdate(BaseModel):
    """Partial update of a mapping; only set fields are applied."""
    mapping_type: str | None = None
    relationship: str | None = None
    sync_enabled: bool | None = None
    conflict_resolution: ConflictResolution | None = None
    field_mapping: dict[str, str] | None = None


class CmdbInventoryMapping(BaseModel):
    """A link between an inventory asset and a CI."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ci_id: str
    inventory_asset_id: str
    mapping_type: str = "direct"
    relationship: str | None = None
    sync_enabled: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.INVENTORY_WINS
    field_mapping: dict[str, str] | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_sync_at: datetime | None = None
    sync_errors: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"from_attributes": True}


class MappingDetail(CmdbInventoryMapping):
    """A mapping with both linked records resolved."""
    configuration_item: ConfigurationItem | None = None
    inventory_asset: InventoryAsset | None = None


class MappingListResponse(BaseModel):
    """Paginated list of mappings."""
    items: list[CmdbInventoryMapping]
    total: int
    page: int
    page_size: int
    pages: int


class SyncOutcome(BaseModel):
    """Result of syncing one mapping."""
    mapping_id: str
    success: bool
    synced_at: datetime
    updated_fields: list[str] = Field(default_factory=list)


class MappingSyncResult(BaseModel):
    """Per-mapping entry of a batch sync."""
    mapping_id: str
    status: SyncStatus
    error: str | None = None


class BatchSyncResult(BaseModel):
    """Result of syncing every enabled mapping."""
    total: int
    successful: int
    failed: int
    results: list[MappingSyncResult] = Field(default_factory=list)


class BulkMappingResult(BaseModel):
    """Per-item entry of a bulk mapping creation."""
    success: bool
    ci_id: str
    inventory_asset_id: str
    mapping: CmdbInventoryMapping | None = None
    error: str | None = None


class BulkMappingResponse(BaseModel):
    """Result of creating many mappings."""
    total: int
    successful: int
    failed: int
    results: list[BulkMappingResult] = Field(default_factory=list)


class MatchSuggestion(BaseModel):
    """Candidate CIs for an unmapped inventory asset."""
    inventory_asset: InventoryAsset
    potential_cis: list[ConfigurationItem]
    confidence: int = Field(..., ge=0, le=100)


class IntegrationOpportunities(BaseModel):
    """Unmapped records on both sides plus match suggestions."""
    unmapped_assets: int
    unmapped_cis: int
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    total_mappings: int


class Recommendation(BaseModel):
    """An operator-facing integration recommendation."""
    type: str = Field(..., pattern=r"^(error|warning|info)$")
    title: str
    description: str
    action: str


class IntegrationSummary(BaseModel):
    """Headline numbers of the integration report."""
    total_mappings: int
    active_mappings: int
    failed_syncs: int
    unmapped_assets: int
    unmapped_cis: int
    integration_health: str = Field(..., pattern=r"^(Healthy|Warning|Critical)$")


class IntegrationReport(BaseModel):
    """Inventory integration dashboard payload."""
    summary: IntegrationSummary
    recent_activity: list[CmdbInventoryMapping] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class CmdbHealth(BaseModel):
    """Data quality metrics of the CMDB graph."""
    metric_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    total_cis: int = 0
    active_cis: int = 0
    stale_cis: int = 0
    orphaned_cis: int = 0
    total_relationships: int = 0
    discovered_cis: int = 0
    manual_cis: int = 0
    completeness_score: float = 0.0
    accuracy_score: int = 0
    cycles: list[list[str]] = Field(default_factory=list)
