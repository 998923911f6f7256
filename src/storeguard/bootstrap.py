from collections.abc import Callable

from sqlalchemy.orm import sessionmaker

from storeguard.adapters import database
from storeguard.adapters.counter_store import AbstractCounterStore, create_counter_store
from storeguard.config import SecurityPolicy, get_counter_store_backend, get_db_uri
from storeguard.service_layer import unit_of_work
from storeguard.service_layer.security_core import SecurityCore


def bootstrap_security_core(
    start_orm: bool = True,
    session_factory: sessionmaker | None = None,
    uow_factory: Callable[[], unit_of_work.AbstractUnitOfWork] | None = None,
    store: AbstractCounterStore | None = None,
    policy: SecurityPolicy | None = None,
) -> SecurityCore:
    if start_orm:
        database.start_mappers()

    if uow_factory is None:
        if session_factory is None:
            session_factory = database.create_session_factory(get_db_uri())
        factory = session_factory

        def uow_factory() -> unit_of_work.AbstractUnitOfWork:
            return unit_of_work.SqlAlchemyUnitOfWork(factory)

    if store is None:
        store = create_counter_store(get_counter_store_backend())

    return SecurityCore(uow_factory, store, policy or SecurityPolicy.from_env())
