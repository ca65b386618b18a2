"""Database helpers for the ordering domain.

Table management only touches providers backed by SQLAlchemy (sqlite,
postgresql); the memory provider needs no schema.

``conditional_update`` is the single primitive behind every race-safe
write (stock, status claims, discount usage). On SQL providers it is one
``UPDATE ... WHERE`` statement and the affected-row count decides the
outcome, so no separate read ever takes part in the decision.
"""

from protean.domain import Domain
from protean.utils.globals import current_domain, current_uow
from protean.utils.reflection import id_field
from sqlalchemy import create_engine, update

SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for provider in domain.providers.values():
        if provider.conn_info["provider"] in SQL_PROVIDERS:
            yield provider


def _register_models(domain: Domain, provider) -> None:
    # Touching ``_dao`` makes Protean build the SQLAlchemy model for each
    # element, which is what puts its table into ``provider._metadata``.
    for record in domain.registry.aggregates.values():
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018
    for record in domain.registry.entities.values():
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018


def uses_sql(domain: Domain) -> bool:
    with domain.domain_context():
        return any(True for _ in _sql_providers(domain))


def setup_db(domain: Domain) -> None:
    """Create every table the domain's aggregates and entities need."""
    with domain.domain_context():
        for provider in _sql_providers(domain):
            _register_models(domain, provider)
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.create_all(engine)


def drop_db(domain: Domain) -> None:
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)


# ---------------------------------------------------------------------------
# Conditional updates
# ---------------------------------------------------------------------------
def conditional_update(aggregate_cls, identifier, condition, changes) -> bool:
    """Write ``changes`` to one record only while ``condition`` holds.

    ``condition`` (or ``None`` for no condition) and ``changes`` are
    callables. On SQL providers they receive the SQLAlchemy model class and
    build column expressions, e.g. ``lambda v: v.stock >= 2`` and
    ``lambda v: {"stock": v.stock - 2}``, which become a single
    ``UPDATE ... SET stock = stock - 2 WHERE id = :id AND stock >= 2``.
    On the memory provider they receive the stored aggregate instead.

    The aggregate's version is not bumped, so an instance loaded earlier
    in the same Unit of Work can still be saved afterwards.

    Returns True when a row was written.
    """
    dao = current_domain.repository_for(aggregate_cls)._dao
    if dao.provider.conn_info["provider"] in SQL_PROVIDERS:
        return _sql_conditional_update(dao, identifier, condition, changes)
    return _memory_conditional_update(dao, identifier, condition, changes)


def _sql_conditional_update(dao, identifier, condition, changes) -> bool:
    model = dao.database_model_cls
    statement = update(model).where(getattr(model, id_field(dao.entity_cls).attribute_name) == identifier)
    if condition is not None:
        statement = statement.where(condition(model))
    statement = statement.values(changes(model)).execution_options(synchronize_session=False)

    session = dao._get_session()
    try:
        # Pending ORM changes must reach the database before the UPDATE,
        # and objects loaded earlier must not shadow the row it writes.
        session.flush()
        updated = session.execute(statement).rowcount
        session.expire_all()
        if not current_uow:
            session.commit()
    finally:
        if not current_uow:
            session.close()
    return updated > 0


def _memory_conditional_update(dao, identifier, condition, changes) -> bool:
    record = dao.get(identifier)
    if condition is not None and not condition(record):
        return False
    for name, value in changes(record).items():
        setattr(record, name, value)
    dao._update(dao.database_model_cls.from_entity(record))
    return True
