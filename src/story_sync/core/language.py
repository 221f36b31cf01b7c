"""Language entity as published by the remote catalog."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class Language:
    code: str
    native_name: str
    english_name: str
    direction: str = "ltr"
    is_gateway: bool = False
    region: str = ""
    home_country: str = ""
    country_codes: List[str] = field(default_factory=list)
    alternate_names: List[str] = field(default_factory=list)
    has_local_collections: bool = False

    @property
    def is_rtl(self) -> bool:
        return self.direction == "rtl"


@dataclass(frozen=True)
class LanguageStats:
    total: int = 0
    with_collections: int = 0
    gateway_languages: int = 0
    rtl_languages: int = 0
