"""M.A.R.C.H. phase MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastmcp import FastMCP

from march.core.audit.logger import AuditLogger
from march.core.config.settings import Settings, get_settings
from march.core.storage.database import DatabaseError, MarchDatabase
from march.core.storage.encryption import EncryptionError, FieldEncryptor
from march.core.storage.repository import MarchRepository
from march.domains.phase.connectors import MarchSampleSource
from march.domains.phase.connectors.memory import InMemorySampleSource
from march.domains.phase.connectors.repository_source import RepositorySampleSource
from march.domains.phase.domain_logic.march_config import MarchConfig, load_march_config
from march.domains.phase.domain_logic.phase_scorer import PhaseScorer
from march.domains.phase.domain_logic.phase_service import MarchPhaseService
from march.domains.phase.prompts.phase_prompts import register_phase_prompts
from march.domains.phase.resources.guidance import register_guidance_resources
from march.domains.phase.tools.data_management_tools import register_data_management_tools
from march.domains.phase.tools.march_phase_tools import register_march_phase_tools
from march.domains.phase.tools.sample_entry_tools import register_sample_entry_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "M.A.R.C.H. Phase Engine"
SERVER_VERSION = "0.1.0"


def _open_repository(settings: Settings) -> tuple[MarchRepository, MarchDatabase] | None:
    """Open the encrypted store, or None when no key is configured or it fails."""
    if not settings.encryption_key:
        logger.info(
            "No ENCRYPTION_KEY configured; running without persistence. "
            "Set ENCRYPTION_KEY to store samples and assessments."
        )
        return None
    try:
        encryptor = FieldEncryptor(settings.encryption_key)
        database = MarchDatabase(settings.db_path)
        database.initialize()
    except (EncryptionError, DatabaseError) as exc:
        logger.error("Failed to initialize storage: %s", exc)
        logger.warning("Continuing without persistence; data will not be stored")
        return None
    logger.info(
        "March store initialized: %s (schema v%d)",
        settings.db_path,
        database.get_schema_version(),
    )
    return MarchRepository(database, encryptor), database


def create_app(
    *,
    repository_override: MarchRepository | None = None,
    source_override: MarchSampleSource | None = None,
    config_override: MarchConfig | None = None,
    clock: Callable[[], datetime] | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the M.A.R.C.H. phase MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Loads the phase engine config (defaults + optional YAML overrides)
    3. Initializes the sample source (encrypted SQLite, else in-memory)
    4. Builds the phase service
    5. Registers all tools, resources, and prompts
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Weekly physiological phase classification. Log biometrics, check-ins, "
            "training and body metrics per client, then compute the client's "
            "M.A.R.C.H. phase (Mitochondria, Absorption/Detox, Resilience, Cyclical, "
            "Hypertrophy/Healthspan) with confidence, rationale and coaching guidance."
        ),
    )

    # --- Phase engine config ---
    config = config_override or load_march_config(settings.march_config_path or None)
    scorer = PhaseScorer(config)

    # --- Sample source ---
    repository: MarchRepository | None = repository_override
    audit_logger: AuditLogger | None = audit_logger_override
    if repository is None and source_override is None:
        opened = _open_repository(settings)
        if opened is not None:
            repository, database = opened
            if audit_logger is None:
                audit_logger = AuditLogger(database)

    if source_override is not None:
        source: MarchSampleSource = source_override
    elif repository is not None:
        source = RepositorySampleSource(repository)
    else:
        source = InMemorySampleSource()
        logger.warning("Using in-memory sample source; data is lost on restart")

    service = MarchPhaseService(
        source,
        scorer,
        clock=clock,
        history_limit=settings.history_default_limit,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_enabled": source.persistent,
            "audit_enabled": audit_logger is not None,
        }
        if repository is not None:
            status["assessments_stored"] = repository.count_assessments()
        return status

    register_march_phase_tools(server, service, audit_logger)
    register_sample_entry_tools(server, service)
    register_data_management_tools(
        server, source, repository=repository, audit_logger=audit_logger
    )
    logger.info("Phase tools registered (persistent=%s)", source.persistent)

    # --- Register resources and prompts ---
    register_guidance_resources(server)
    register_phase_prompts(server)

    return server


# Module-level instance for FastMCP discovery; created lazily so tests that
# import create_app don't open the configured database.
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
