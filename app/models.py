from app import db
from flask_login import UserMixin
from app.utils.timeutil import utcnow
import secrets


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True,
                         nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32))
    role = db.Column(db.String(20), default='customer', nullable=False)  # 'customer', 'admin'
    api_token = db.Column(db.String(64), unique=True, index=True)
    is_active_account = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    orders = db.relationship('Order', back_populates='user', lazy=True)

    def __str__(self):
        return self.username

    @property
    def is_active(self):
        return self.is_active_account

    @property
    def is_admin(self):
        return self.role == 'admin'

    def issue_api_token(self):
        self.api_token = secrets.token_hex(32)
        return self.api_token


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    is_digital = db.Column(db.Boolean, default=False, nullable=False)
    # 'single', 'multiple', 'unlimited'; NULL for products sold without a license key
    license_type = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    files = db.relationship('ProductFile', back_populates='product', lazy=True,
                            order_by='ProductFile.id', cascade='all, delete-orphan')

    def __str__(self):
        return self.title

    @property
    def is_licensable(self):
        return self.license_type is not None


class ProductFile(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    # relative to UPLOAD_FOLDER
    file_path = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer, default=0, nullable=False)
    mime_type = db.Column(db.String(120), default='application/octet-stream', nullable=False)
    uploaded_at = db.Column(db.DateTime, default=utcnow)

    product = db.relationship('Product', back_populates='files')


class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    # 'pending', 'completed', 'failed', 'refunded', ...
    payment_status = db.Column(db.String(30), default='pending', nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', back_populates='orders')
    items = db.relationship('OrderItem', back_populates='order', lazy=True,
                            cascade='all, delete-orphan')

    def __str__(self):
        return f"Order {self.order_number} ({self.payment_status})"

    def includes_product(self, product_id):
        return any(item.product_id == product_id for item in self.items)


class OrderItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('order.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    quantity = db.Column(db.Integer, default=1, nullable=False)
    price = db.Column(db.Numeric(10, 2), default=0, nullable=False)

    order = db.relationship('Order', back_populates='items')
    product = db.relationship('Product')


class CapabilityGrant(db.Model):
    """A bearer grant for one download or one license key.

    ``used_count``/``max_uses`` count downloads for download grants and
    device activations for license grants.
    Every write bumps ``version``; mutations are applied as a compare-and-swap
    on it (see ``GrantLedger.apply``).
    """
    __tablename__ = 'capability_grant'

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)  # 'download', 'license'
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    resource_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey('order.id'), nullable=False, index=True)

    used_count = db.Column(db.Integer, default=0, nullable=False)
    max_uses = db.Column(db.Integer, nullable=False)

    issued_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    status = db.Column(db.String(20), default='active', nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # license grants only
    license_type = db.Column(db.String(20))
    is_activated = db.Column(db.Boolean, default=False, nullable=False)
    activated_at = db.Column(db.DateTime)
    grant_metadata = db.Column('metadata', db.JSON)
    notes = db.Column(db.Text)

    version = db.Column(db.Integer, default=1, nullable=False)

    owner = db.relationship('User')
    resource = db.relationship('Product')
    purchase = db.relationship('Order')
    usages = db.relationship('GrantUsage', back_populates='grant', lazy=True,
                             order_by='GrantUsage.id', cascade='all, delete-orphan',
                             passive_deletes=True)
    activations = db.relationship('DeviceActivation', back_populates='grant', lazy=True,
                                  order_by='DeviceActivation.id', cascade='all, delete-orphan',
                                  passive_deletes=True)

    __table_args__ = (
        db.Index('ix_capability_grant_owner_status', 'owner_id', 'status'),
        db.Index('ix_capability_grant_inactive_updated', 'is_active', 'updated_at'),
    )

    def __str__(self):
        return f"{self.kind} grant {self.id} ({self.status})"

    @property
    def open_activations(self):
        return [a for a in self.activations if a.deactivated_at is None]

    def to_dict(self, include_token=True):
        data = {
            'id': self.id,
            'kind': self.kind,
            'owner_id': self.owner_id,
            'resource_id': self.resource_id,
            'purchase_id': self.purchase_id,
            'used_count': self.used_count,
            'max_uses': self.max_uses,
            'remaining_uses': max(0, self.max_uses - self.used_count),
            'issued_at': _iso(self.issued_at),
            'expires_at': _iso(self.expires_at),
            'updated_at': _iso(self.updated_at),
            'status': self.status,
            'is_active': self.is_active,
        }
        if include_token:
            data['token'] = self.token
        if self.kind == 'license':
            data.update({
                'license_type': self.license_type,
                'is_activated': self.is_activated,
                'activated_at': _iso(self.activated_at),
                'metadata': self.grant_metadata,
                'notes': self.notes,
                'activations': [a.to_dict() for a in self.activations],
            })
        return data


class GrantUsage(db.Model):
    """Append-only usage history. Rows are never updated."""
    __tablename__ = 'grant_usage'

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey('capability_grant.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    occurred_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    # 'redeem', 'activate', 'deactivate', 'expire'
    action = db.Column(db.String(20), nullable=False)
    success = db.Column(db.Boolean, default=True, nullable=False)
    reason = db.Column(db.String(255))
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    device_id = db.Column(db.String(128))

    grant = db.relationship('CapabilityGrant', back_populates='usages')

    def to_dict(self):
        return {
            'occurred_at': _iso(self.occurred_at),
            'action': self.action,
            'success': self.success,
            'reason': self.reason,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'device_id': self.device_id,
        }


class DeviceActivation(db.Model):
    """Device binding for license grants.

    Deactivation sets ``deactivated_at`` once; the row itself is kept.
    """
    __tablename__ = 'device_activation'

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey('capability_grant.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    device_id = db.Column(db.String(128), nullable=False, index=True)
    device_name = db.Column(db.String(120))
    activated_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    deactivated_at = db.Column(db.DateTime)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))

    grant = db.relationship('CapabilityGrant', back_populates='activations')

    def to_dict(self):
        return {
            'device_id': self.device_id,
            'device_name': self.device_name,
            'activated_at': _iso(self.activated_at),
            'deactivated_at': _iso(self.deactivated_at),
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
        }


def _iso(value):
    return value.isoformat() if value is not None else None
