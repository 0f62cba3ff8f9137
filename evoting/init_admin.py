# One-off bootstrap: python -m evoting.init_admin
from pymongo.database import Database

from evoting.config import (
    ADMINS_COLLECTION_NAME,
    INITIAL_ADMIN_EMAIL,
    INITIAL_ADMIN_NAME,
    INITIAL_ADMIN_PASSWORD,
)
from evoting.crud import create_admin, get_admin_by_email
from evoting.database.connection import MongoConnector
from evoting.security import hash_password


def hash_existing_passwords(db: Database) -> int:
    """Move any plaintext ``password`` field on admin accounts to a bcrypt ``hashed_password``."""
    admins = db[ADMINS_COLLECTION_NAME]
    hashed = 0
    for admin in admins.find({"password": {"$exists": True}}):
        password = admin["password"]
        # Skip if password already looks hashed (bcrypt prefix)
        value = password if password.startswith("$2") else hash_password(password)
        admins.update_one(
            {"_id": admin["_id"]},
            {"$set": {"hashed_password": value}, "$unset": {"password": ""}},
        )
        hashed += 1
        print(f"Hashed password for admin {admin.get('email')}")
    return hashed


def create_initial_admin(db: Database, email: str, password: str, full_name: str) -> bool:
    if get_admin_by_email(db, email):
        print("Admin already exists. Skipping admin creation.")
        return False
    if not password:
        print("INITIAL_ADMIN_PASSWORD is not set. Skipping admin creation.")
        return False
    create_admin(db, email, password, full_name, role="super_admin")
    print(f"Initial admin created successfully: {email}")
    return True


def main() -> None:
    # Connecting also creates indexes and default system settings
    db = MongoConnector().db
    hash_existing_passwords(db)
    create_initial_admin(db, INITIAL_ADMIN_EMAIL, INITIAL_ADMIN_PASSWORD, INITIAL_ADMIN_NAME)
    print("System initialization completed.")


if __name__ == "__main__":
    main()
