import re
from enum import Enum
from typing import Optional

import tldextract

# only this much of a message is ever scanned
MAX_SCAN_CHARS = 4000


class Platform(Enum):
    INSTAGRAM = "Instagram"
    REDDIT = "Reddit"
    TIKTOK = "TikTok"
    TWITCH = "Twitch"
    TWITTER = "Twitter"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def proxy_domain(self) -> str:
        return PROXY_DOMAINS[self]


# detection order doubles as the tie-break when a message holds several links
PRIORITY = (
    Platform.INSTAGRAM,
    Platform.REDDIT,
    Platform.TIKTOK,
    Platform.TWITCH,
    Platform.TWITTER,
)

PROXY_DOMAINS = {
    Platform.INSTAGRAM: "kkinstagram.com",
    Platform.REDDIT: "rxddit.com",
    Platform.TIKTOK: "kktiktok.com",
    Platform.TWITCH: "fxtwitch.seria.moe",
    Platform.TWITTER: "fxtwitter.com",
}

PREFILTER_DOMAINS = (
    "instagram.com",
    "reddit.com",
    "tiktok.com",
    "twitch.tv",
    "twitter.com",
    "x.com",
)

#coarse signatures, one per platform, no named groups
SIGNATURES = {
    Platform.INSTAGRAM: r"https?://(?:www\.)?instagram\.com/(?:reels?|p)/[^/\s?]+",
    Platform.REDDIT: r"https?://(?:(?:www|old|new|np)\.)?reddit\.com/r/\w+",
    Platform.TIKTOK: r"https?://(?:\w{1,3}\.)?tiktok\.com/\S+",
    Platform.TWITCH: r"https?://(?:(?:(?:www|m)\.)?twitch\.tv/\w+/clip/[\w-]+|clips\.twitch\.tv/[\w-]+)",
    Platform.TWITTER: r"https?://(?:www\.)?(?:twitter|x)\.com/\w+/status/",
}


def _build_matcher() -> re.Pattern:
    # One lookahead per platform, tried in priority order from the start of
    # the text, so the first platform with a match anywhere wins.
    branches = "|".join(
        f"(?=.*?(?P<{platform.name.lower()}>{SIGNATURES[platform]}))"
        for platform in PRIORITY
    )
    return re.compile(f"(?:{branches})", re.IGNORECASE | re.DOTALL)


MATCHER = _build_matcher()

_domain_extractor = tldextract.TLDExtract(suffix_list_urls=())


def contains_link(text: str) -> bool:
    lowered = (text or "")[:MAX_SCAN_CHARS].lower()
    return any(domain in lowered for domain in PREFILTER_DOMAINS)


def detect(text: str) -> Optional[Platform]:
    if not contains_link(text):
        return None

    match = MATCHER.match(text[:MAX_SCAN_CHARS])
    if match is None:
        return None
    return Platform[match.lastgroup.upper()]


def extract_domain(url: str) -> str:
    ext = _domain_extractor(url)
    return f"{ext.domain}.{ext.suffix}" if ext.suffix else ext.domain
