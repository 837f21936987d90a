import asyncio
import re
from dataclasses import dataclass, replace
from typing import Optional

import aiohttp
from bs4 import BeautifulSoup

from logs import log_debug
from platforms import MAX_SCAN_CHARS, Platform, detect, extract_domain

PATTERNS = {
    Platform.INSTAGRAM: re.compile(
        r"https?://(?:www\.)?instagram\.com/(?P<type>reels?|p)(?P<data>/[^/\s?<>()]+)",
        re.IGNORECASE,
    ),
    Platform.REDDIT: re.compile(
        r"https?://(?P<subdomain>(?:(?:www|old|new|np)\.)?)reddit\.com/r/(?P<subreddit>\w+)(?P<data>/[^\s<>()]*)?",
        re.IGNORECASE,
    ),
    Platform.TIKTOK: re.compile(
        r"https?://(?P<subdomain>(?:\w{1,3}\.)?)(?P<domain>tiktok\.com)(?P<data>/[^\s<>()]*)",
        re.IGNORECASE,
    ),
    Platform.TWITCH: re.compile(
        r"https?://(?:(?:(?:www|m)\.)?twitch\.tv/(?P<username>\w+)/clip/(?P<clip>[\w-]+)"
        r"|clips\.twitch\.tv/(?P<short_clip>[\w-]+))",
        re.IGNORECASE,
    ),
    Platform.TWITTER: re.compile(
        r"https?://(?:www\.)?(?:twitter|x)\.com/(?P<username>\w+)(?P<data>/status/[^?\s<>()]*)",
        re.IGNORECASE,
    ),
}

TIKTOK_AUTHOR = re.compile(r"/@(?P<username>[\w.-]+)")
PLAIN_USERNAME = re.compile(r"^\w+$")

# platforms whose links may not carry the author
LOOKUP_PLATFORMS = (Platform.TIKTOK, Platform.TWITCH)

LOOKUP_HEADERS = {"User-Agent": "curl/8"}


@dataclass(frozen=True)
class ParsedLink:
    platform: Platform
    original_url: str
    rewritten_url: str
    display_username: Optional[str] = None
    post_type: Optional[str] = None
    subreddit: Optional[str] = None
    clip_id: Optional[str] = None

    @property
    def caption(self) -> str:
        if self.platform is Platform.INSTAGRAM:
            subject = "Reel" if (self.post_type or "").lower() in ("reel", "reels") else "Post"
        elif self.display_username:
            subject = f"@{self.display_username}"
        else:
            subject = "Post"
        return f"[{subject} via {self.platform.display_name}]({self.rewritten_url})"

    def with_username(self, username: str) -> "ParsedLink":
        cleaned = re.sub(r"[\[\]()]", "", username).strip()
        if not cleaned:
            return self
        rewritten_url = self.rewritten_url
        if self.platform is Platform.TWITCH and self.clip_id and PLAIN_USERNAME.match(cleaned):
            rewritten_url = _twitch_url(cleaned, self.clip_id)
        return replace(self, display_username=cleaned, rewritten_url=rewritten_url)


def _twitch_url(username: Optional[str], clip_id: str) -> str:
    domain = Platform.TWITCH.proxy_domain
    if username:
        return f"https://{domain}/{username}/clip/{clip_id}"
    return f"https://{domain}/clip/{clip_id}"


def rewrite(text: str, platform: Platform) -> Optional[ParsedLink]:
    """
    Re-parses text with the platform's own pattern and builds the proxy link.
    Returns None when the coarse detection matched but the fields could not be
    extracted.
    """
    match = PATTERNS[platform].search((text or "")[:MAX_SCAN_CHARS])
    if match is None:
        return None

    original_url = match.group(0)
    domain = platform.proxy_domain

    if platform is Platform.INSTAGRAM:
        post_type = match.group("type")
        return ParsedLink(
            platform=platform,
            original_url=original_url,
            rewritten_url=f"https://{domain}/{post_type}{match.group('data')}",
            post_type=post_type.lower(),
        )

    if platform is Platform.REDDIT:
        subreddit = match.group("subreddit")
        data = match.group("data") or ""
        segments = [segment for segment in data.split("/") if segment]
        return ParsedLink(
            platform=platform,
            original_url=original_url,
            rewritten_url=f"https://{match.group('subdomain')}{domain}/r/{subreddit}{data}",
            post_type=segments[0].lower() if segments else None,
            subreddit=subreddit,
        )

    if platform is Platform.TIKTOK:
        data = match.group("data")
        author = TIKTOK_AUTHOR.search(data)
        return ParsedLink(
            platform=platform,
            original_url=original_url,
            rewritten_url=f"https://{match.group('subdomain')}{domain}{data}",
            display_username=author.group("username") if author else None,
        )

    if platform is Platform.TWITCH:
        username = match.group("username")
        clip_id = match.group("clip") or match.group("short_clip")
        return ParsedLink(
            platform=platform,
            original_url=original_url,
            rewritten_url=_twitch_url(username, clip_id),
            display_username=username,
            clip_id=clip_id,
        )

    username = match.group("username")
    return ParsedLink(
        platform=platform,
        original_url=original_url,
        rewritten_url=f"https://{domain}/{username}{match.group('data')}",
        display_username=username,
    )


def sanitize_text(text: str) -> Optional[ParsedLink]:
    platform = detect(text)
    if platform is None:
        return None
    return rewrite(text, platform)


class AuthorLookup:
    """
    Best-effort author recovery for TikTok short links and Twitch clips.
    Every failure mode ends in None so the caption simply degrades.
    """

    def __init__(self, timeout: float = 2.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=LOOKUP_HEADERS,
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def enrich(self, link: ParsedLink) -> ParsedLink:
        if link.display_username or link.platform not in LOOKUP_PLATFORMS:
            return link

        username = await self.find_author(link)
        if not username:
            return link
        return link.with_username(username)

    async def find_author(self, link: ParsedLink) -> Optional[str]:
        try:
            session = await self._get_session()
            if link.platform is Platform.TIKTOK:
                return await self._tiktok_author(session, link.original_url)
            return await self._twitch_author(session, link.original_url)
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            log_debug(f"Author lookup failed for {link.original_url}: {e!r}")
            return None

    async def _tiktok_author(self, session: aiohttp.ClientSession, url: str) -> Optional[str]:
        async with session.get(url, allow_redirects=False) as resp:
            location = resp.headers.get("Location")

        if not location or extract_domain(location) != "tiktok.com":
            log_debug(f"No usable redirect for {url} (Location: {location})")
            return None

        author = TIKTOK_AUTHOR.search(location)
        return author.group("username") if author else None

    async def _twitch_author(self, session: aiohttp.ClientSession, url: str) -> Optional[str]:
        async with session.get(url, allow_redirects=False) as resp:
            if resp.status != 200:
                log_debug(f"Twitch page for {url} returned HTTP {resp.status}")
                return None
            html = await resp.text()

        return parse_twitch_author(html)


def parse_twitch_author(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("meta", attrs={"property": "og:title"})
    if tag is None or not tag.get("content"):
        return None

    # "ClipTitle - Username"
    title = tag["content"]
    if " - " not in title:
        return None
    username = title.rsplit(" - ", 1)[1].strip()
    return username or None
