#!/usr/bin/env python3
"""
Bootstrap the first company and app owner.
Run once against a fresh database: python create_admin.py
"""

import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.app.db import Base, SessionLocal, engine
from api.app.models import Company, User, UserRole, UserStatus
from api.app.security import hash_password, password_problem

logger = logging.getLogger(__name__)


def create_admin_user() -> User:
    """Create the app owner (and their company) unless the email already exists."""
    admin_email = os.getenv("ADMIN_EMAIL", "admin@rfidesk.app").strip().lower()
    admin_password = os.getenv("ADMIN_PASSWORD", "ChangeThis123!")
    company_name = os.getenv("ADMIN_COMPANY", "RFI Desk")

    problem = password_problem(admin_password)
    if problem:
        raise ValueError(f"ADMIN_PASSWORD rejected: {problem}")

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == admin_email).first()
        if existing:
            print(f"Admin user {admin_email} already exists")
            return existing

        company = db.query(Company).filter(Company.name == company_name).first()
        if company is None:
            company = Company(name=company_name)
            db.add(company)
            db.flush()

        admin = User(
            email=admin_email,
            full_name="Administrator",
            password_hash=hash_password(admin_password),
            role=UserRole.APP_OWNER,
            status=UserStatus.ACTIVE,
            company_id=company.id,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        print(f"Admin user created: {admin.email} ({company.name})")
        return admin
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating admin user: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_admin_user()
