"""
Create a TextBuilder account and print a bearer token for it.
Signup is not part of the API; operators provision accounts with this script.

Usage (from backend/):
  python -m scripts.create_account --email writer@example.com --name "Writer" --credits 500
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure backend root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from auth import create_account_token
from database import database
from textbuilder.services.account_service import account_service

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def create_account(email: str, name: str, credits: int) -> dict:
    account = await account_service.create_account(email=email, name=name, initial_credits=credits)
    token = create_account_token(account["account_id"], account["email"])
    return {"account": account, "token": token}


def main():
    parser = argparse.ArgumentParser(description="Create an account and print its bearer token")
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument("--name", default="", help="Display name")
    parser.add_argument("--credits", type=int, default=0, help="Opening credit balance")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await create_account(args.email, args.name, args.credits)
        finally:
            await database.close()

    try:
        result = asyncio.run(_())
    except ValueError as e:
        logger.error(str(e))
        return 1

    account = result["account"]
    print(f"account_id: {account['account_id']}")
    print(f"credits:    {account.get('credits', 0)}")
    print(f"token:      {result['token']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
