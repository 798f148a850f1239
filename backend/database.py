from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for balances, ledger and holds."""
        try:
            # Accounts
            await self.db.accounts.create_index("account_id", unique=True)
            try:
                await self.db.accounts.create_index("email", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.accounts.create_index("stripe_customer_id", sparse=True)
            await self.db.accounts.create_index("pending_holds")

            # Ledger - transaction_id is the hold id for protocol-written
            # entries, so the unique index makes the ledger write idempotent
            await self.db.credit_transactions.create_index("transaction_id", unique=True)
            await self.db.credit_transactions.create_index([("account_id", 1), ("created_at", -1)])
            await self.db.credit_transactions.create_index("transaction_type")
            await self.db.credit_transactions.create_index(
                [("reference_id", 1), ("transaction_type", 1)], sparse=True
            )

            # Credit holds - reconciler scans by status + age
            await self.db.credit_holds.create_index("hold_id", unique=True)
            await self.db.credit_holds.create_index([("status", 1), ("updated_at", 1)])
            await self.db.credit_holds.create_index("account_id")

            # Articles
            await self.db.articles.create_index("article_id", unique=True)
            await self.db.articles.create_index([("account_id", 1), ("created_at", -1)])
            await self.db.articles.create_index("job_id", sparse=True)

            # Generation jobs - worker picks queued jobs, recovery scans running ones by age
            await self.db.generation_jobs.create_index("job_id", unique=True)
            await self.db.generation_jobs.create_index([("account_id", 1), ("created_at", -1)])
            await self.db.generation_jobs.create_index([("status", 1), ("updated_at", 1)])

            # Stripe webhook idempotency - duplicate event_id must not process twice
            try:
                await self.db.stripe_events.create_index("event_id", unique=True)
            except Exception:
                pass
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
