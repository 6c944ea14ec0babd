import pytest
from datetime import date
from decimal import Decimal
from io import BytesIO

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from campstore import create_app
from campstore.database import Base, create_tables, get_session
from campstore.models import RentalProduct, SalesProduct, SpecialPackage
from campstore.services.cart_service import CartAggregator
from campstore.services.catalog_service import CatalogLookup
from campstore.services.order_builder import CustomerInfo, DeliveryInfo, RentalPeriod, build_order
from campstore.services.payment_workflow import SlipUpload

CUSTOMER_ID = 'user-1'
OTHER_CUSTOMER_ID = 'user-2'


class FakeStorage:
    """In-memory replacement for the S3 slip storage."""

    public_url = 'http://storage.test'
    bucket = 'payment-slips'

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.reachable = True

    def upload_file(self, stream, object_name, content_type, metadata=None):
        stream.seek(0)
        self.objects[object_name] = {'data': stream.read(), 'content_type': content_type}
        return self.get_object_url(object_name)

    def delete_file(self, object_name):
        self.deleted.append(object_name)
        return self.objects.pop(object_name, None) is not None

    def get_object_url(self, object_name):
        return f"{self.public_url}/{self.bucket}/{object_name}"

    def object_name_from_url(self, url):
        prefix = f"{self.public_url}/{self.bucket}/"
        return url[len(prefix):] if url and url.startswith(prefix) else None

    def ping(self):
        return self.reachable


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    with app.app_context():
        create_tables()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied after the test."""
    session = get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()


@pytest.fixture(scope='function')
def storage(app):
    """Fake slip storage wired into the app."""
    storage = FakeStorage()
    app.extensions['slip_storage'] = storage
    yield storage
    app.extensions.pop('slip_storage', None)


@pytest.fixture(scope='function')
def file_db(tmp_path):
    """Session factory on a file-backed database, for tests that need separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30}
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


# =====================================================
# CATALOG
# =====================================================

@pytest.fixture(scope='function')
def tent(session):
    """Rental tent: 1000/day, 6000/week, 5 units."""
    product = RentalProduct(
        name='Dome Tent',
        daily_rate=Decimal('1000.00'),
        weekly_rate=Decimal('6000.00'),
        total_quantity=5,
        available_quantity=5,
        active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def lantern(session):
    """Rental lantern with a single unit and no weekly rate."""
    product = RentalProduct(
        name='Lantern',
        daily_rate=Decimal('200.00'),
        weekly_rate=None,
        total_quantity=1,
        available_quantity=1,
        active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def stove(session):
    """Sale item: 2000 each, 10 in stock."""
    product = SalesProduct(name='Gas Stove', price=Decimal('2000.00'), stock=10, active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def weekend_kit(session):
    package = SpecialPackage(name='Weekend Kit', price=Decimal('15000.00'), active=True)
    session.add(package)
    session.commit()
    return package


@pytest.fixture(scope='function')
def catalog(session):
    return CatalogLookup(session)


# =====================================================
# CHECKOUT INPUT
# =====================================================

@pytest.fixture
def customer():
    return CustomerInfo(name='Aminata Kamara', email='aminata@example.com', phone='+232 76 123456',
                        user_id=CUSTOMER_ID)


@pytest.fixture
def delivery():
    return DeliveryInfo(address='12 Lumley Beach Road', city='Freetown', state='Western Area',
                        postal_code='00232')


@pytest.fixture
def week_period():
    """Seven billable days."""
    return RentalPeriod(start_date=date(2026, 11, 1), end_date=date(2026, 11, 8))


@pytest.fixture
def make_slip():
    """Factory for in-memory slip uploads."""
    def _make(content=b'%PDF-1.4 bank transfer receipt', mime_type='application/pdf', file_name='receipt.pdf'):
        return SlipUpload(file_name=file_name, mime_type=mime_type, size=len(content), stream=BytesIO(content))
    return _make


@pytest.fixture
def rental_order(session, tent, customer, week_period, catalog):
    """Persisted rental order holding 2 tents for a week."""
    cart = CartAggregator()
    cart.add(tent.id, 'rental', tent.daily_rate, quantity=2, weekly_rate=tent.weekly_rate, name=tent.name)
    return build_order(session, cart, customer, None, week_period, catalog)


@pytest.fixture
def sales_order(session, stove, customer, delivery, catalog):
    """Persisted sales order for 3 stoves."""
    cart = CartAggregator()
    cart.add(stove.id, 'sale', stove.price, quantity=3, name=stove.name)
    return build_order(session, cart, customer, delivery, None, catalog)


# =====================================================
# CLIENTS
# =====================================================

@pytest.fixture(scope='function')
def customer_client(client):
    """Client logged in as a regular customer."""
    with client.session_transaction() as sess:
        sess['user_id'] = CUSTOMER_ID
        sess['user_email'] = 'aminata@example.com'
        sess['user_name'] = 'Aminata Kamara'
        sess['user_role'] = 'customer'
    return client


@pytest.fixture(scope='function')
def staff_client(app):
    """Client logged in as store staff."""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user_id'] = 'staff-1'
        sess['user_email'] = 'staff@campstore.test'
        sess['user_name'] = 'Store Staff'
        sess['user_role'] = 'admin'
    return client
