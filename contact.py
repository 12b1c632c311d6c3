"""
Contact intake — stores contact-form messages for admin review.
"""

import logging
from typing import List

from database import Storage
from schemas import ContactCreate

logger = logging.getLogger(__name__)


class ContactService:
    def __init__(self, storage: Storage):
        self.storage = storage

    def submit(self, payload: ContactCreate) -> dict:
        message = self.storage.create_contact_message(payload.model_dump())
        logger.info("Contact message %s received", message["id"])
        return message

    def list_messages(self, caller: dict) -> List[dict]:
        """All messages, newest first. ``caller`` must already be an admin."""
        return self.storage.get_contact_messages()
