# gateway/core/bootstrap/pipeline.py
"""
BOOTSTRAP PIPELINE - build the ConfigRegistry once at startup

Steps, in order:
    1. Merge user config onto compiled defaults
    2. Resolve the default database
    3. Bind datasources (caller engines, or engines/clients from config)
    4. Load table configs from the table config directory
    5. Reconcile table configs with each live relational schema
    6. Hand everything to a ConfigRegistry

Any failure aborts startup; bindings created so far are closed first.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from gateway.core.bootstrap.reconcile import reconcile_all
from gateway.core.bootstrap.tables import load_table_configs
from gateway.core.config import DatasourceConfig, GatewayConfig, load_config
from gateway.core.database import (
    DEFAULT_BINDING_NAME,
    Binding,
    build_binding,
    build_engine,
    wrap_engine,
)
from gateway.core.errors import ConfigurationError
from gateway.core.registry import ConfigRegistry

logger = logging.getLogger(__name__)


def bind_engines(engines: Sequence[AsyncEngine], owned: bool) -> Dict[str, Binding]:
    # Only one caller-supplied handle is supported for now
    if len(engines) > 1:
        logger.warning(
            f"{len(engines)} engines supplied, only the first is bound as "
            f"[{DEFAULT_BINDING_NAME}]"
        )
    binding = wrap_engine(engines[0])
    binding.owned = owned
    return {binding.name: binding}


async def bind_datasources(config: GatewayConfig) -> Dict[str, Binding]:
    bindings: Dict[str, Binding] = {}
    try:
        for name, source in config.datasources.items():
            bindings[name] = build_binding(name, source)
    except Exception:
        await close_bindings(bindings)
        raise
    return bindings


async def close_bindings(bindings: Mapping[str, Binding]) -> None:
    # Engine pools and search clients alike; caller-supplied handles are skipped
    for binding in bindings.values():
        await binding.close()


def table_databases(
    config: GatewayConfig, bindings: Mapping[str, Binding], supplied: bool
) -> List[str]:
    # Supplied engines replace the configured datasources entirely
    if supplied:
        return list(bindings)
    names = list(config.datasources)
    names.extend(name for name in bindings if name not in names)
    return names


async def bootstrap(
    config_file: Optional[str] = None,
    engines: Optional[Sequence[AsyncEngine]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    own_engines: bool = False,
) -> ConfigRegistry:
    """
    Build the registry every request is dispatched against.

    Args:
        config_file: Config path; None reads gateway.json when present.
        engines: Ready-made engines; when given they replace configured
            datasources and the first becomes the "default" database.
        overrides: Config merged over the file (highest precedence).
        own_engines: Dispose the supplied engines when the registry closes.

    Returns:
        Fully populated ConfigRegistry.

    Raises:
        ConfigurationError: bad or missing config, no datasource, bad pool
            properties, unreadable table files, failed introspection.
    """
    logger.info("Bootstrap step 1: loading config")
    config = load_config(config_file, overrides)

    logger.info("Bootstrap step 2-3: binding datasources")
    if engines:
        bindings = bind_engines(engines, own_engines)
        config = config.model_copy(update={"default_datasource": DEFAULT_BINDING_NAME})
    else:
        if not config.datasources:
            raise ConfigurationError("No datasource configured")
        bindings = await bind_datasources(config)

    default_db = config.default_database
    if default_db not in bindings:
        await close_bindings(bindings)
        raise ConfigurationError(f"Default datasource [{default_db}] is not declared")

    registry = ConfigRegistry(config, bindings)
    try:
        logger.info(f"Bootstrap step 4: loading table configs for default [{default_db}]")
        tables = load_table_configs(
            config.table_config_path,
            table_databases(config, bindings, supplied=bool(engines)),
            default_db,
        )

        logger.info("Bootstrap step 5: reconciling with live schema")
        await reconcile_all(bindings, tables)
    except Exception:
        await registry.close()
        raise

    logger.info(f"Bootstrap complete: {len(bindings)} datasource(s) ready")
    return ConfigRegistry(config, bindings, tables)


async def bootstrap_from_url(
    url: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    config_file: Optional[str] = None,
) -> ConfigRegistry:
    """Single relational datasource from a bare url, bound as "default"."""
    source = DatasourceConfig(url=url, username=username, password=password)
    engine = build_engine(DEFAULT_BINDING_NAME, source)
    try:
        return await bootstrap(config_file=config_file, engines=[engine], own_engines=True)
    except Exception:
        await engine.dispose()
        raise
