from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from typing import Optional
import logging

logger = logging.getLogger(__name__)

class Database:
    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self, mongo_url: str, db_name: str):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[db_name]
            # Verify connection
            await self.client.admin.command('ping')
            logger.info(f"Connected to MongoDB database: {db_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def get_db(self) -> AsyncIOMotorDatabase:
        """Get database instance"""
        if self.db is None:
            raise Exception("Database not connected")
        return self.db

db = Database()

async def get_database() -> AsyncIOMotorDatabase:
    return db.get_db()


async def ensure_indexes(database: AsyncIOMotorDatabase):
    """Create the unique and lookup indexes used by the billing collections"""
    await database.quotations.create_index("quotation_number", unique=True)
    await database.quotations.create_index([("client", ASCENDING), ("status", ASCENDING)])
    await database.quotations.create_index([("project", ASCENDING), ("status", ASCENDING)])
    await database.quotations.create_index([("created_at", DESCENDING)])

    await database.invoices.create_index("invoice_number", unique=True)
    await database.invoices.create_index([("client", ASCENDING), ("status", ASCENDING)])
    await database.invoices.create_index([("due_date", ASCENDING)])
    await database.invoices.create_index([("created_at", DESCENDING)])

    await database.payments.create_index("payment_number", unique=True)
    await database.payments.create_index([("invoice", ASCENDING)])
    await database.payments.create_index([("client", ASCENDING), ("status", ASCENDING)])
    await database.payments.create_index([("payment_date", DESCENDING)])

    await database.projects.create_index("project_number", unique=True)
    await database.projects.create_index([("client", ASCENDING)])

    await database.clients.create_index("email", unique=True)
    await database.users.create_index("email", unique=True)

    await database.notifications.create_index([("recipient", ASCENDING), ("read_at", ASCENDING)])
    await database.notifications.create_index([("created_at", DESCENDING)])

    logger.info("MongoDB indexes ensured")
