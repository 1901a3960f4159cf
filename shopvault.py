from app import create_app, db
from app.models import User, Product, ProductFile, Order, OrderItem, CapabilityGrant, GrantUsage, DeviceActivation

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Product": Product,
        "ProductFile": ProductFile,
        "Order": Order,
        "OrderItem": OrderItem,
        "CapabilityGrant": CapabilityGrant,
        "GrantUsage": GrantUsage,
        "DeviceActivation": DeviceActivation,
        "grants": app.extensions['grants'],
    }


if __name__ == '__main__':
    app.run(debug=True)
