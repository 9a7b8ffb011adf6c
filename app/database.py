"""Database configuration and initialization."""
from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def _engine_options(database_uri):
    """Pool options per backend. In-memory SQLite must share one connection."""
    if database_uri.startswith('sqlite'):
        options = {'connect_args': {'check_same_thread': False}}
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            options['poolclass'] = StaticPool
        return options
    return {
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        **_engine_options(database_uri)
    )

    db_session = scoped_session(
        sessionmaker(autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Models must be imported so their tables are registered on Base.metadata
    from app import models  # noqa: F401

    if app.config.get('DB_CREATE_ALL'):
        create_all()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table registered on the declarative base."""
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table registered on the declarative base."""
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntegerId = BigInteger().with_variant(Integer, 'sqlite')
