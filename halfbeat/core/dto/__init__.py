from halfbeat.core.dto.video import (
    AudioTrackDTO,
    BiliAudio,
    PageDTO,
    ResolvedLink,
    SearchResultDTO,
    VideoInfoDTO,
)
from halfbeat.core.dto.account import (
    LoginPollDTO,
    LoginPollResult,
    QRCodeDTO,
    UserInfoDTO,
)
from halfbeat.core.dto.favorite import FavoriteCollectionDTO, FavoriteItemDTO

# Library Store entities
from halfbeat.core.dto.library import (
    ExportData,
    Favorite,
    LyricMapping,
    PlayerSetting,
    PlayHistory,
    Playlist,
    Song,
    SongRef,
    StreamSource,
    Theme,
)

__all__ = [
    # Upstream
    "AudioTrackDTO",
    "BiliAudio",
    "PageDTO",
    "ResolvedLink",
    "SearchResultDTO",
    "VideoInfoDTO",
    "LoginPollDTO",
    "LoginPollResult",
    "QRCodeDTO",
    "UserInfoDTO",
    "FavoriteCollectionDTO",
    "FavoriteItemDTO",

    # Library
    "ExportData",
    "Favorite",
    "LyricMapping",
    "PlayerSetting",
    "PlayHistory",
    "Playlist",
    "Song",
    "SongRef",
    "StreamSource",
    "Theme",
]
