import os
from datetime import timedelta

import pytest
from flask import g

os.environ.setdefault('SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

from app import create_app, db  # noqa: E402
from app.models import User, Product, ProductFile, Order, OrderItem  # noqa: E402
from app.utils.timeutil import utcnow  # noqa: E402


class FakeClock:
    """Controllable replacement for ``utcnow`` injected into the grant services."""

    def __init__(self, now=None):
        self.now = now or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def app(tmp_path):
    """Create and configure a test app."""
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI='sqlite:///:memory:',
        GRANT_SWEEPER_ENABLED=False,
        NOTIFICATIONS_ASYNC=False,
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
        AUDIT_LOG_DIR=str(tmp_path / 'logs'),
    )
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def api(client):
    """Call the JSON API, optionally authenticated as ``user``."""
    def call(method, url, user=None, **kwargs):
        # the app context (and its g) is shared by every request in a test
        g.pop('_login_user', None)
        headers = kwargs.pop('headers', {})
        if user is not None:
            headers['Authorization'] = f'Bearer {user.api_token}'
        return client.open(url, method=method, headers=headers, **kwargs)
    return call


@pytest.fixture
def clock(app):
    """Freeze the grant services' clock; tests move it with ``clock.advance``."""
    fake = FakeClock()
    app.extensions['grants'].clock = fake
    return fake


@pytest.fixture
def grants(app):
    return app.extensions['grants']


@pytest.fixture
def customer(app):
    user = User(username='customer', email='customer@example.com', phone='+8801712345678')
    user.issue_api_token()
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def other_customer(app):
    user = User(username='other', email='other@example.com')
    user.issue_api_token()
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    user = User(username='admin_test', email='admin@test.com', role='admin')
    user.issue_api_token()
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def ebook(app):
    """A digital product sold with a single-device license, with one file on disk."""
    relative = 'products/python-guide/guide.pdf'
    path = os.path.join(app.config['UPLOAD_FOLDER'], *relative.split('/'))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(b'%PDF-1.4 test guide')

    product = Product(title='Python Guide', is_digital=True, license_type='single')
    product.files.append(ProductFile(original_name='guide.pdf', file_path=relative,
                                     file_size=19, mime_type='application/pdf'))
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture
def physical_book(app):
    product = Product(title='Printed Atlas', is_digital=False)
    db.session.add(product)
    db.session.commit()
    return product


def make_order(user, products, status='completed', number='ORD-1001'):
    order = Order(order_number=number, user=user, payment_status=status)
    for product in products:
        order.items.append(OrderItem(product=product, quantity=1, price=19.99))
    db.session.add(order)
    db.session.commit()
    return order


@pytest.fixture
def order_factory(app):
    return make_order


@pytest.fixture
def paid_order(customer, ebook, physical_book):
    return make_order(customer, [ebook, physical_book])
