from __future__ import annotations

import logging
from typing import List

from halfbeat.core.api import BilibiliClient
from halfbeat.core.credentials import CredentialStore
from halfbeat.core.dto import (
    FavoriteCollectionDTO,
    FavoriteItemDTO,
    LoginPollResult,
    QRCodeDTO,
    UserInfoDTO,
)
from halfbeat.core.errors import PlayerError, ValidationError

logger = logging.getLogger(__name__)

# data.code values of the QR poll endpoint
QR_LOGIN_OK = 0
QR_EXPIRED = 86038
QR_NOT_SCANNED = 86101
QR_SCANNED_UNCONFIRMED = 86090

_POLL_MESSAGES = {
    QR_EXPIRED: "QR code expired",
    QR_NOT_SCANNED: "QR code not scanned yet",
    QR_SCANNED_UNCONFIRMED: "Scanned, waiting for confirmation",
}


class AccountManager:
    """
    QR login, user info and the user's platform favorite folders.
    """

    def __init__(self, api: BilibiliClient, credentials: CredentialStore):
        self.api = api
        self.credentials = credentials

    def generate_login_qr(self) -> QRCodeDTO:
        qr = self.api.generate_login_qr()
        logger.info(f"Login QR generated, valid until {qr.expire_at.isoformat()}")
        return qr

    def poll_login(self, qrcode_key: str) -> LoginPollResult:
        """
        Check a QR login attempt.

        On success the session cookies are already in the shared jar;
        persisting them is best effort.
        """
        if not qrcode_key:
            raise ValidationError("qrcode_key must not be empty")

        poll = self.api.poll_login(qrcode_key)
        if poll.status_code == QR_LOGIN_OK:
            try:
                self.credentials.save()
            except PlayerError as e:
                logger.warning(f"Logged in but could not persist the credential: {e}")
            return LoginPollResult(logged_in=True, message="Logged in")

        message = _POLL_MESSAGES.get(poll.status_code) or poll.message or f"unknown status {poll.status_code}"
        return LoginPollResult(logged_in=False, message=message)

    def is_logged_in(self) -> bool:
        return self.credentials.is_logged_in()

    def get_user_info(self) -> UserInfoDTO:
        if not self.is_logged_in():
            raise ValidationError("not logged in")
        return self.api.get_nav()

    def logout(self) -> None:
        self.credentials.logout()

    # Favorite folders

    def get_my_favorite_collections(self) -> List[FavoriteCollectionDTO]:
        user = self.get_user_info()
        folders = self.api.get_created_folders(user.uid)
        logger.info(f"Found {len(folders)} favorite folders for {user.username}")
        return folders

    def get_favorite_collection_info(self, media_id: int) -> FavoriteCollectionDTO:
        return self.api.get_folder_info(media_id)

    def get_favorite_collection_bvids(self, media_id: int) -> List[FavoriteItemDTO]:
        return self.api.get_folder_bvids(media_id)
