from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class QRCodeDTO:
    url: str
    qrcode_key: str
    expire_at: datetime


@dataclass(frozen=True)
class LoginPollDTO:
    status_code: int
    message: str
    url: str
    refresh_token: str


@dataclass(frozen=True)
class LoginPollResult:
    logged_in: bool
    message: str


@dataclass(frozen=True)
class UserInfoDTO:
    uid: int
    username: str
    face: str
    level: int
    vip_type: int
