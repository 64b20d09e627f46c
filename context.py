"""
The process-wide service context handed to request handlers.

Built once when the app starts (or supplied by the caller, e.g. tests) and
closed on shutdown.
"""
from typing import Optional

from fastapi import Request
from pymongo import MongoClient
from pymongo.database import Database

from database import connect, ensure_indexes
from logger import get_logger
from mailer import Mailer
from payments import RazorpayGateway

logger = get_logger("context")


class StoreContext:
    def __init__(self, db: Database, gateway: RazorpayGateway, mailer: Mailer,
                 client: Optional[MongoClient] = None):
        self.db = db
        self.gateway = gateway
        self.mailer = mailer
        self._client = client

    @classmethod
    def from_env(cls) -> "StoreContext":
        client, db = connect()
        ensure_indexes(db)
        return cls(db=db, gateway=RazorpayGateway.from_config(), mailer=Mailer.from_config(), client=client)

    def close(self) -> None:
        self.gateway.close()
        if self._client is not None:
            self._client.close()
            self._client = None
        logger.info("Store context closed")


def get_context(request: Request) -> StoreContext:
    return request.app.state.context
