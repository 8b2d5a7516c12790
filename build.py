#!/usr/bin/env python3
"""
Build script for deployment.
This script initializes the database, seeds the plan catalogue and creates
the platform administrator.
"""
import logging

from app import create_app
from app_models import db, User
from security import hash_password
import subscriptions

logger = logging.getLogger(__name__)


def create_super_admin(app):
    """Create the platform super admin from SUPER_ADMIN_EMAIL / SUPER_ADMIN_PASSWORD"""
    email = app.config.get('SUPER_ADMIN_EMAIL')
    password = app.config.get('SUPER_ADMIN_PASSWORD')
    if not email or not password:
        logger.warning("SUPER_ADMIN_EMAIL/SUPER_ADMIN_PASSWORD not set, skipping super admin")
        return None

    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is not None:
        logger.info("Super admin %s already exists", email)
        return user

    user = User(
        email=email,
        name='Platform Admin',
        password_hash=hash_password(password),
        role='SUPER_ADMIN',
        status='ACTIVE',
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Created super admin %s", email)
    return user


def initialize_database(app=None):
    """Initialize database for production deployment."""
    app = app or create_app()
    with app.app_context():
        logger.info("Creating database tables...")
        db.create_all()

        logger.info("Seeding subscription plans...")
        subscriptions.seed_plans()

        logger.info("Creating platform administrator...")
        create_super_admin(app)

        logger.info("Expiring overdue subscriptions...")
        subscriptions.expire_overdue_societies()

        logger.info("Database initialization completed successfully!")


if __name__ == "__main__":
    initialize_database()
