# meatcart/cli.py
from datetime import timedelta

import click
from werkzeug.security import generate_password_hash

from .extensions import db
from .model import Coupon, DeliveryBoy, User
from .model.delivery_boy import VEHICLE_TYPES
from .utils.dates import utcnow
from .utils.money import D


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", required=True)
def create_admin(email, password, name):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        click.echo("Email already exists"); return
    u = User(email=email, name=name, password_hash=generate_password_hash(password), role="admin")
    db.session.add(u); db.session.commit()
    click.echo(f"Admin created: {u.id} {u.email}")


@click.command("create-delivery-boy")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option("--phone", required=True)
@click.option("--vehicle-type", type=click.Choice(VEHICLE_TYPES), default="two-wheeler", show_default=True)
@click.option("--vehicle-registration", default=None)
@click.option("--approve/--no-approve", default=False, help="Approve the account immediately.")
def create_delivery_boy(email, password, first_name, last_name, phone, vehicle_type, vehicle_registration, approve):
    email = email.strip().lower()
    if DeliveryBoy.query.filter((DeliveryBoy.email == email) | (DeliveryBoy.phone == phone)).first():
        click.echo("Email or phone already registered"); return
    d = DeliveryBoy(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        password_hash=generate_password_hash(password),
        vehicle_type=vehicle_type,
        vehicle_registration=(vehicle_registration or None),
        is_approved=approve,
        is_verified=approve,
    )
    db.session.add(d); db.session.commit()
    click.echo(f"Delivery boy created: {d.id} {d.email} (approved={d.is_approved})")


@click.command("approve-delivery-boy")
@click.argument("email")
def approve_delivery_boy(email):
    d = DeliveryBoy.query.filter_by(email=email.strip().lower()).first()
    if not d:
        click.echo("Delivery boy not found"); return
    d.is_approved = True
    d.is_verified = True
    db.session.commit()
    click.echo(f"Delivery boy approved: {d.id} {d.email}")


SAMPLE_COUPONS = (
    {
        "code": "WELCOME10",
        "description": "10% off your order above ₹500",
        "type": "percentage",
        "value": "10",
        "minimum_order_value": "500",
        "maximum_discount": "200",
    },
    {
        "code": "FLAT100",
        "description": "Flat ₹100 off on orders above ₹1000",
        "type": "fixed",
        "value": "100",
        "minimum_order_value": "1000",
        "maximum_discount": None,
    },
)


@click.command("seed-coupons")
@click.option("--days", default=30, show_default=True, help="Validity window from now.")
def seed_coupons(days):
    now = utcnow()
    created = 0
    for sample in SAMPLE_COUPONS:
        if Coupon.query.filter_by(code=sample["code"]).first():
            click.echo(f"skip {sample['code']} (exists)")
            continue
        db.session.add(Coupon(
            code=sample["code"],
            description=sample["description"],
            type=sample["type"],
            value=D(sample["value"]),
            minimum_order_value=D(sample["minimum_order_value"]),
            maximum_discount=D(sample["maximum_discount"]) if sample["maximum_discount"] else None,
            usage_count=0,
            user_usage_limit=1,
            valid_from=now,
            valid_to=now + timedelta(days=days),
            is_active=True,
        ))
        created += 1
    db.session.commit()
    click.echo(f"Seeded {created} coupon(s)")


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(create_delivery_boy)
    app.cli.add_command(approve_delivery_boy)
    app.cli.add_command(seed_coupons)
