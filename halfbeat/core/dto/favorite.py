from dataclasses import dataclass


@dataclass(frozen=True)
class FavoriteCollectionDTO:
    id: int
    title: str
    count: int
    cover: str


@dataclass(frozen=True)
class FavoriteItemDTO:
    bvid: str
    title: str = ""
    cover: str = ""
