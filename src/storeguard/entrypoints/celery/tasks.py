import logging
from typing import Any

from celery.signals import setup_logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

import storeguard.logging
from storeguard import config
from storeguard.adapters.counter_store import AbstractCounterStore
from storeguard.bootstrap import bootstrap_security_core
from storeguard.entrypoints.celery.app import app
from storeguard.service_layer.exceptions import StoreGuardError


@setup_logging.connect
def config_loggers(*args: Any, **kwargs: Any) -> None:
    storeguard.logging.logging_setup(config.get_log_level())


@app.task
def sweep_expired_security_state(
    session_factory: sessionmaker | None = None, store: AbstractCounterStore | None = None
) -> dict[str, int]:
    """
    Periodic task that deactivates expired IP blocks and evicts expired counter store keys.

    Only the database and a shared Redis store are reachable from a worker. An in-process
    counter store is swept by its own thread in the web process instead.

    Returns:
        Counts of deactivated blocks and evicted keys, plus the number of errors
    """
    logging.info("Starting sweep_expired_security_state periodic job")
    result = {"blocks": 0, "keys": 0, "errors": 0}
    try:
        core = bootstrap_security_core(session_factory=session_factory, store=store)
        result.update(core.sweep_expired())
    except (StoreGuardError, SQLAlchemyError) as exc:
        result["errors"] += 1
        logging.error(f"Error in sweep_expired_security_state: {exc}", exc_info=True)

    logging.info(f"Sweep completed: {result}")
    return result
