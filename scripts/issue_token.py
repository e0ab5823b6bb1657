"""
Issue an access token for a local or staging user.

Creates the user if the email is unknown, sets the given roles, optionally
links a client record to the account, and prints a bearer token.

Run with:
    python scripts/issue_token.py --email finance@example.com --name "Finance" --role finance
    python scripts/issue_token.py --email jane@client.com --name "Jane" --role client --client-id <id>
"""

import argparse
import asyncio
import os
import sys
import uuid
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

load_dotenv()

from models.user import Role
from services.auth_service import create_access_token


async def upsert_user(db, email: str, name: str, roles: list) -> str:
    now = datetime.utcnow()
    existing = await db.users.find_one({"email": email})
    if existing:
        await db.users.update_one(
            {"_id": existing["_id"]},
            {"$set": {"name": name, "roles": roles, "is_active": True}}
        )
        print(f"  OK: updated {email} roles={roles}")
        return existing["_id"]

    user_id = str(uuid.uuid4())
    await db.users.insert_one({
        "_id": user_id,
        "email": email,
        "name": name,
        "roles": roles,
        "is_active": True,
        "notification_preferences": {"in_app": True, "email": True},
        "created_at": now
    })
    print(f"  OK: created {email} roles={roles}")
    return user_id


async def main():
    parser = argparse.ArgumentParser(description="Create or update a user and print an access token")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument(
        "--role",
        action="append",
        choices=[role.value for role in Role],
        required=True,
        help="May be repeated"
    )
    parser.add_argument("--client-id", help="Client record to link to this account")
    parser.add_argument("--expires-minutes", type=int, default=None)
    args = parser.parse_args()

    mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    db_name = os.getenv("DB_NAME", "sire_ops")

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]
    print(f"Connected to: {mongo_url}/{db_name}")

    try:
        user_id = await upsert_user(db, args.email.lower(), args.name, args.role)

        if args.client_id:
            result = await db.clients.update_one({"_id": args.client_id}, {"$set": {"user_id": user_id}})
            if result.matched_count == 0:
                print(f"  WARN: client {args.client_id} not found, account not linked")
                return 1
            print(f"  OK: linked client {args.client_id}")

        token = create_access_token({"sub": user_id}, expires_minutes=args.expires_minutes)
        print(f"\n{token}")
        return 0
    finally:
        client.close()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
