"""
PostgreSQL Module - Event Hooks

Handles module lifecycle events like enable/disable.
Creates the catalog tables and the data directories used for app installs,
uploads and backups.

Module ID: 620610
"""

import logging
import os
from pathlib import Path

from . import MODULE_ID, MODULE_NAME
from .schema import create_tables

logger = logging.getLogger("uvicorn.error")


# =============================================================================
# Directory Helpers
# =============================================================================

def get_data_dir() -> Path:
    """Get the Flux data directory for this module."""
    # In production: /var/lib/flux
    data_dir = os.environ.get("FLUX_DATA_DIR")
    if data_dir:
        return Path(data_dir) / "modules" / MODULE_NAME
    # Fallback to a local data directory relative to module
    return Path(__file__).parent / "data"


def get_apps_dir() -> Path:
    """Get the directory holding installed engine apps (compose files, data dirs)."""
    return get_data_dir() / "apps"


def get_uploads_dir() -> Path:
    """Get the directory holding user uploaded database dumps."""
    return get_data_dir() / "uploads"


def get_backups_dir() -> Path:
    """Get the local backup storage directory."""
    backup_dir = os.environ.get("FLUX_POSTGRESQL_BACKUP_DIR")
    if backup_dir:
        return Path(backup_dir)
    return get_data_dir() / "backups"


def get_container_runtime() -> str:
    """Container CLI used for exec and compose operations."""
    return os.environ.get("FLUX_CONTAINER_RUNTIME", "podman")


# =============================================================================
# Lifecycle Hooks
# =============================================================================

async def on_enable(data: dict, context) -> dict:
    """
    Called when the postgresql module is enabled.
    - Creates the catalog tables if missing
    - Creates necessary data directories (apps, uploads, backups)
    """
    logger.info(f"PostgreSQL module (ID: {MODULE_ID}) enabled — initializing...")
    results = {"success": True, "steps": []}

    engine = getattr(context, "engine", None)
    if engine is not None:
        try:
            async with engine.begin() as conn:
                await create_tables(conn)
            results["steps"].append({"action": "create_tables", "success": True})
        except Exception as e:
            logger.error(f"Could not create catalog tables: {e}")
            results["success"] = False
            results["steps"].append({"action": "create_tables", "success": False, "error": str(e)})

    directories = {
        "apps": get_apps_dir(),
        "uploads": get_uploads_dir(),
        "backups": get_backups_dir(),
    }

    for dir_name, dir_path in directories.items():
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created {dir_name} directory: {dir_path}")
            results["steps"].append({
                "action": f"create_{dir_name}_dir",
                "success": True,
                "path": str(dir_path),
            })
        except OSError as e:
            logger.warning(f"Could not create {dir_name} directory: {e}")
            results["steps"].append({
                "action": f"create_{dir_name}_dir",
                "success": False,
                "error": str(e),
            })

    results["message"] = f"PostgreSQL module (ID: {MODULE_ID}) initialized"
    return results


async def on_disable(data: dict, context) -> dict:
    """
    Called when the postgresql module is disabled.
    Note: Does NOT drop catalog tables, engine data or backups.
    """
    logger.info(f"PostgreSQL module (ID: {MODULE_ID}) disabled — catalog preserved")
    return {
        "success": True,
        "message": "Module disabled. Catalog and data remain intact.",
    }


# =============================================================================
# Hook Registration (loaded by the Flux module loader)
# =============================================================================

HOOKS = {
    "after_module_enable": on_enable,
    "after_module_disable": on_disable,
}
