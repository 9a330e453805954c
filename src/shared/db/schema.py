"""Database schema initialization for the CMDB and inventory stores."""
from __future__ import annotations

from src.shared.db.connection import ConnectionPool

SCHEMA_VERSION = 1


def init_cmdb_db(pool: ConnectionPool) -> None:
    """Initialize the CMDB database schema.

    Relationship multiplicity is enforced here, not only in the service:
    ``uq_rel_exclusive`` allows one active edge per (source, type) when the
    row was inserted with ``exclusive = 1`` (type disallows multiples).
    """
    conn = pool.get()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS ci_types (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general',
            default_status TEXT NOT NULL DEFAULT 'Active',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS configuration_items (
            id TEXT PRIMARY KEY,
            ci_id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            display_name TEXT,
            description TEXT,
            ci_type TEXT NOT NULL,
            ci_sub_type TEXT,
            ci_status TEXT NOT NULL DEFAULT 'Active',
            criticality TEXT NOT NULL DEFAULT 'Medium'
                CHECK(criticality IN ('Low','Medium','High','Critical')),
            environment TEXT,
            serial_number TEXT,
            asset_tag TEXT,
            model TEXT,
            manufacturer TEXT,
            vendor TEXT,
            location TEXT,
            department TEXT,
            owner TEXT,
            purchase_date TEXT,
            warranty_expiry_date TEXT,
            custom_fields TEXT,
            attributes TEXT NOT NULL DEFAULT '{}',
            is_discovered INTEGER NOT NULL DEFAULT 0,
            discovery_source TEXT,
            first_discovered_date TEXT,
            last_discovered_date TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_ci_name ON configuration_items(name);
        CREATE INDEX IF NOT EXISTS idx_ci_serial ON configuration_items(serial_number);
        CREATE INDEX IF NOT EXISTS idx_ci_type ON configuration_items(ci_type);
        CREATE INDEX IF NOT EXISTS idx_ci_status ON configuration_items(ci_status);

        CREATE TABLE IF NOT EXISTS ci_network_details (
            ci_id TEXT PRIMARY KEY
                REFERENCES configuration_items(id) ON DELETE CASCADE,
            ip_address TEXT,
            mac_address TEXT,
            fqdn TEXT,
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_netdetail_ip ON ci_network_details(ip_address);

        CREATE TABLE IF NOT EXISTS ci_relationship_types (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            source_ci_type_constraint TEXT,
            target_ci_type_constraint TEXT,
            allow_multiple INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS ci_relationships (
            id TEXT PRIMARY KEY,
            -- no CI foreign keys: soft-deleted edges outlive a deleted CI
            source_ci_id TEXT NOT NULL,
            target_ci_id TEXT NOT NULL,
            relationship_type_id TEXT NOT NULL
                REFERENCES ci_relationship_types(id),
            description TEXT,
            criticality TEXT NOT NULL DEFAULT 'Medium'
                CHECK(criticality IN ('Low','Medium','High','Critical')),
            is_active INTEGER NOT NULL DEFAULT 1,
            exclusive INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_rel_source ON ci_relationships(source_ci_id, is_active);
        CREATE INDEX IF NOT EXISTS idx_rel_target ON ci_relationships(target_ci_id, is_active);
        CREATE UNIQUE INDEX IF NOT EXISTS uq_rel_edge
            ON ci_relationships(source_ci_id, target_ci_id, relationship_type_id)
            WHERE is_active = 1;
        CREATE UNIQUE INDEX IF NOT EXISTS uq_rel_exclusive
            ON ci_relationships(source_ci_id, relationship_type_id)
            WHERE is_active = 1 AND exclusive = 1;

        CREATE TABLE IF NOT EXISTS business_services (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            criticality TEXT NOT NULL DEFAULT 'Medium'
                CHECK(criticality IN ('Low','Medium','High','Critical')),
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS ci_business_services (
            ci_id TEXT NOT NULL
                REFERENCES configuration_items(id) ON DELETE CASCADE,
            business_service_id TEXT NOT NULL
                REFERENCES business_services(id) ON DELETE CASCADE,
            criticality TEXT NOT NULL DEFAULT 'Medium'
                CHECK(criticality IN ('Low','Medium','High','Critical')),
            PRIMARY KEY (ci_id, business_service_id)
        );

        CREATE TABLE IF NOT EXISTS discovery_schedules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            discovery_type TEXT NOT NULL
                CHECK(discovery_type IN ('Network','Windows','Linux','Cloud','Database')),
            cron_expression TEXT,
            scope_configuration TEXT NOT NULL DEFAULT '{}',
            is_active INTEGER NOT NULL DEFAULT 1,
            next_run_date TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS discovery_runs (
            id TEXT PRIMARY KEY,
            schedule_id TEXT,
            discovery_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Running'
                CHECK(status IN ('Running','Completed','Failed')),
            start_time TEXT NOT NULL DEFAULT (datetime('now')),
            end_time TEXT,
            items_discovered INTEGER NOT NULL DEFAULT 0,
            items_updated INTEGER NOT NULL DEFAULT 0,
            items_created INTEGER NOT NULL DEFAULT 0,
            items_failed INTEGER NOT NULL DEFAULT 0,
            error_message TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_runs_start ON discovery_runs(start_time);

        CREATE TABLE IF NOT EXISTS discovered_items (
            id TEXT PRIMARY KEY,
            run_id TEXT NOT NULL REFERENCES discovery_runs(id) ON DELETE CASCADE,
            discovered_data TEXT NOT NULL,
            fingerprint TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'New'
                CHECK(status IN ('New','Processed','Error')),
            ci_id TEXT REFERENCES configuration_items(id) ON DELETE SET NULL,
            processing_notes TEXT,
            discovered_at TEXT NOT NULL DEFAULT (datetime('now')),
            processed_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_items_run ON discovered_items(run_id, status);
        CREATE INDEX IF NOT EXISTS idx_items_fingerprint ON discovered_items(fingerprint);

        CREATE TABLE IF NOT EXISTS cmdb_inventory_mappings (
            id TEXT PRIMARY KEY,
            ci_id TEXT NOT NULL
                REFERENCES configuration_items(id) ON DELETE CASCADE,
            inventory_asset_id TEXT NOT NULL,
            mapping_type TEXT NOT NULL DEFAULT 'direct',
            relationship TEXT,
            sync_enabled INTEGER NOT NULL DEFAULT 1,
            conflict_resolution TEXT NOT NULL DEFAULT 'inventory_wins'
                CHECK(conflict_resolution IN ('cmdb_wins','inventory_wins','newest_wins')),
            field_mapping TEXT,
            sync_status TEXT NOT NULL DEFAULT 'pending'
                CHECK(sync_status IN ('pending','success','failed')),
            last_sync_at TEXT,
            sync_errors TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_map_ci ON cmdb_inventory_mappings(ci_id);
        CREATE INDEX IF NOT EXISTS idx_map_asset ON cmdb_inventory_mappings(inventory_asset_id);

        CREATE TABLE IF NOT EXISTS ci_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ci_id TEXT NOT NULL,
            operation TEXT NOT NULL,
            field_name TEXT,
            old_value TEXT,
            new_value TEXT,
            changed_by TEXT,
            timestamp TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_audit_ci ON ci_audit_log(ci_id);
    """)
    conn.commit()

    # Seed schema_version if empty
    row = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()
    if row[0] == 0:
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()


def init_inventory_db(pool: ConnectionPool) -> None:
    """Initialize the inventory asset schema read by the mapping synchronizer."""
    conn = pool.get()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS inventory_assets (
            id TEXT PRIMARY KEY,
            asset_tag TEXT,
            serial_number TEXT,
            model TEXT,
            status TEXT,
            vendor_id TEXT,
            location_id TEXT,
            department TEXT,
            assigned_to_user_id TEXT,
            purchase_date TEXT,
            warranty_expiry TEXT,
            custom_fields TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_assets_serial ON inventory_assets(serial_number);
        CREATE INDEX IF NOT EXISTS idx_assets_tag ON inventory_assets(asset_tag);
    """)
    conn.commit()
