"""Database configuration and initialization."""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def build_engine(database_uri: str, echo: bool = False):
    """Create an engine, skipping pool sizing for SQLite."""
    if database_uri.startswith('sqlite'):
        if ':memory:' in database_uri or database_uri.rstrip('/') == 'sqlite:':
            # One shared connection, otherwise each checkout sees an empty database
            return create_engine(
                database_uri,
                echo=echo,
                connect_args={'check_same_thread': False},
                poolclass=StaticPool
            )
        return create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False}
        )
    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = build_engine(database_uri, echo=app.config.get('SQLALCHEMY_ECHO', False))

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create every mapped table (used by the CLI and the test suite)."""
    # Import models so every table is registered on Base.metadata
    import campstore.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every mapped table."""
    import campstore.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def ping() -> bool:
    """Run a trivial query to check connectivity."""
    row = db_session.execute(text("SELECT 1 as health_check")).fetchone()
    return bool(row and row[0] == 1)


def get_session():
    """Get database session."""
    return db_session
