"""
PostgreSQL Module - Database Administration for Flux

Administrative control plane for PostgreSQL engines running either in a
locally supervised container or on a remote server. Provides database
provisioning, credential rotation, host access policy, configuration file
replacement and deprovisioning, while keeping the database catalog in sync.

Module ID: 620610
Table Prefix: 620610_postgresql
"""

__version__ = "1.0.0"

# =============================================================================
# Unified Module Identifier System
# =============================================================================

MODULE_ID = "620610"
MODULE_NAME = "postgresql"
TABLE_PREFIX = f"{MODULE_ID}_{MODULE_NAME}"

# =============================================================================
# Table Name Constants
# =============================================================================

INSTANCES_TABLE = f"{TABLE_PREFIX}_instances"
DATABASES_TABLE = f"{TABLE_PREFIX}_databases"
APP_INSTALLS_TABLE = f"{TABLE_PREFIX}_app_installs"
APP_INSTALL_RESOURCES_TABLE = f"{TABLE_PREFIX}_app_install_resources"
BACKUP_RECORDS_TABLE = f"{TABLE_PREFIX}_backup_records"

# =============================================================================
# Administrative Defaults
# =============================================================================

ORIGIN_LOCAL = "local"
ENGINE_TYPE = "postgresql"

# Ceiling (seconds) applied to every administrative operation
DEFAULT_TIMEOUT = 300

# Access permission stored for freshly created databases: any host
DEFAULT_PERMISSION = "%"
