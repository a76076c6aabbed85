"""
Liyaqa - Database Configuration
SQLAlchemy ORM setup for PostgreSQL
"""
from flask_sqlalchemy import SQLAlchemy
import logging
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)


def init_db(app):
    """Initialize database with app"""
    db.init_app(app)

    with app.app_context():
        # Import models to register them
        from liyaqa import models  # noqa

        db.create_all()

        logger.info("Database tables created")


def commit():
    """Commit the current session, rolling back on failure"""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def save(*instances):
    """Add instances to the session and commit"""
    for instance in instances:
        db.session.add(instance)
    commit()
    return instances[0] if len(instances) == 1 else instances
