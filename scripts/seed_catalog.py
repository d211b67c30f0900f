"""Bootstrap the material catalog and, optionally, a demo project directory.

Usage:
  python scripts/seed_catalog.py
  python scripts/seed_catalog.py --demo --state Karnataka
"""
import argparse
import logging
from decimal import Decimal

from sitesupply_core.app.config import configure_logging
from sitesupply_core.app.db import SessionLocal, create_db_and_tables
from sitesupply_core.app import models

logger = logging.getLogger("seed_catalog")

CATALOG = [
    # code, name, unit, price (INR per unit), category
    ("CEM-OPC-53", "Cement", "bags", Decimal("400"), "binding"),
    ("SND-RIV", "Sand", "tonne", Decimal("3750"), "aggregate"),
    ("GRV-20MM", "Gravel", "tonne", Decimal("2750"), "aggregate"),
    ("BRK-RED", "Bricks", "pcs", Decimal("10"), "masonry"),
    ("STL-TMT", "Steel Bars (TMT)", "kg", Decimal("62"), "steel"),
    ("RMC-M20", "Concrete Mix", "m3", Decimal("6000"), "concrete"),
]

DEMO_USERS = [
    # username, full name, role
    ("owner", "Site Owner", "owner"),
    ("manager", "Site Manager", "manager"),
    ("engineer", "Site Engineer", "engineer"),
    ("purchase", "Purchase Manager", "purchase_manager"),
]


def seed_catalog(db) -> int:
    created = 0
    for code, name, unit, price, category in CATALOG:
        if db.query(models.MaterialCatalog).filter(models.MaterialCatalog.code == code).first():
            continue
        db.add(models.MaterialCatalog(
            code=code, name=name, unit=unit, approx_price_inr=price, category=category
        ))
        created += 1
    db.commit()
    return created


def seed_demo_project(db, state: str) -> models.Project:
    users = {}
    for username, full_name, role in DEMO_USERS:
        user = db.query(models.User).filter(models.User.username == username).first()
        if not user:
            user = models.User(full_name=full_name, username=username, email=f"{username}@example.com", role=role)
            db.add(user)
            db.flush()
        users[role] = user

    project = db.query(models.Project).filter(models.Project.name == "Demo Site").first()
    if not project:
        project = models.Project(name="Demo Site", location="Pune", state=state, owner_id=users["owner"].id)
        db.add(project)
        db.flush()
        for role in ("manager", "engineer"):
            db.add(models.ProjectMember(project_id=project.id, user_id=users[role].id))
    db.commit()
    return project


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--demo', action='store_true', help='also create demo users and a project')
    parser.add_argument('--state', default='Maharashtra', help='state of the demo project')
    args = parser.parse_args()

    configure_logging()
    create_db_and_tables()
    db = SessionLocal()
    try:
        created = seed_catalog(db)
        logger.info("Catalog seeded: %s new materials", created)
        if args.demo:
            project = seed_demo_project(db, args.state)
            logger.info("Demo project ready: %s (id %s)", project.name, project.id)
    finally:
        db.close()


if __name__ == '__main__':
    main()
