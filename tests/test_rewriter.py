import asyncio

import aiohttp

from platforms import Platform
from rewriter import AuthorLookup, ParsedLink, parse_twitch_author, rewrite, sanitize_text


def test_tiktok_short_link_keeps_subdomain_and_path() -> None:
    link = sanitize_text("https://vm.tiktok.com/ZGdah868J/")
    assert link.platform is Platform.TIKTOK
    assert link.rewritten_url == "https://vm.kktiktok.com/ZGdah868J/"
    assert link.display_username is None
    assert link.caption == "[Post via TikTok](https://vm.kktiktok.com/ZGdah868J/)"


def test_tiktok_full_link_has_username() -> None:
    link = sanitize_text("https://www.tiktok.com/@some.user/video/7312345678901234567?lang=en")
    assert link.rewritten_url == "https://www.kktiktok.com/@some.user/video/7312345678901234567?lang=en"
    assert link.display_username == "some.user"
    assert link.caption.startswith("[@some.user via TikTok](")


def test_instagram_post() -> None:
    link = sanitize_text("https://instagram.com/p/CMeJMFBs66n/")
    assert link.platform is Platform.INSTAGRAM
    assert link.post_type == "p"
    assert link.rewritten_url == "https://kkinstagram.com/p/CMeJMFBs66n"
    assert link.caption.startswith("[Post via Instagram]")


def test_instagram_reel() -> None:
    link = sanitize_text("check https://www.instagram.com/reel/C6lmbgLLflh/?igsh=abc")
    assert link.post_type == "reel"
    assert link.rewritten_url == "https://kkinstagram.com/reel/C6lmbgLLflh"
    assert link.caption.startswith("[Reel via Instagram]")


def test_twitter() -> None:
    link = sanitize_text("https://x.com/loltyler1/status/1795602572444865533")
    assert link.platform is Platform.TWITTER
    assert link.display_username == "loltyler1"
    assert link.rewritten_url == "https://fxtwitter.com/loltyler1/status/1795602572444865533"
    assert link.caption == "[@loltyler1 via Twitter](https://fxtwitter.com/loltyler1/status/1795602572444865533)"


def test_twitter_drops_tracking_query() -> None:
    link = sanitize_text("https://twitter.com/someone/status/123?s=20&t=abc")
    assert link.rewritten_url == "https://fxtwitter.com/someone/status/123"


def test_reddit() -> None:
    link = sanitize_text("https://old.reddit.com/r/python/comments/abc123/some_title/")
    assert link.platform is Platform.REDDIT
    assert link.rewritten_url == "https://old.rxddit.com/r/python/comments/abc123/some_title/"
    assert link.subreddit == "python"
    assert link.post_type == "comments"
    assert link.caption.startswith("[Post via Reddit]")


def test_links_wrapped_in_brackets_or_parentheses() -> None:
    twitter = sanitize_text("<https://x.com/a/status/1>")
    assert twitter.rewritten_url == "https://fxtwitter.com/a/status/1"

    tiktok = sanitize_text("(https://vm.tiktok.com/ZGdah868J/)")
    assert tiktok.rewritten_url == "https://vm.kktiktok.com/ZGdah868J/"
    assert tiktok.caption.endswith("(https://vm.kktiktok.com/ZGdah868J/)")

    reddit = sanitize_text("look (https://www.reddit.com/r/aww/comments/xyz/cute/) here")
    assert reddit.rewritten_url == "https://www.rxddit.com/r/aww/comments/xyz/cute/"

    instagram = sanitize_text("<https://www.instagram.com/p/Cabc123>")
    assert instagram.rewritten_url == "https://kkinstagram.com/p/Cabc123"


def test_reddit_share_link() -> None:
    link = sanitize_text("https://www.reddit.com/r/aww/s/Xyz123")
    assert link.rewritten_url == "https://www.rxddit.com/r/aww/s/Xyz123"
    assert link.post_type == "s"


def test_twitch_clip_forms() -> None:
    long_form = sanitize_text("https://www.twitch.tv/streamer/clip/BraveClip-xyz")
    assert long_form.rewritten_url == "https://fxtwitch.seria.moe/streamer/clip/BraveClip-xyz"
    assert long_form.display_username == "streamer"

    short_form = sanitize_text("https://clips.twitch.tv/BraveClip-xyz")
    assert short_form.clip_id == "BraveClip-xyz"
    assert short_form.display_username is None
    assert short_form.rewritten_url == "https://fxtwitch.seria.moe/clip/BraveClip-xyz"


def test_with_username_rebuilds_twitch_url() -> None:
    short_form = sanitize_text("https://clips.twitch.tv/BraveClip-xyz")
    named = short_form.with_username("streamer")
    assert named.rewritten_url == "https://fxtwitch.seria.moe/streamer/clip/BraveClip-xyz"
    assert named.caption.startswith("[@streamer via Twitch]")


def test_with_username_strips_markdown() -> None:
    link = sanitize_text("https://vm.tiktok.com/ZGdah868J/")
    named = link.with_username("[evil](x)")
    assert named.display_username == "evilx"


def test_rewrite_returns_none_when_fields_missing() -> None:
    assert rewrite("https://instagram.com/stories/someone", Platform.INSTAGRAM) is None
    assert sanitize_text("nothing to see") is None


def test_parse_twitch_author() -> None:
    html = '<html><head><meta property="og:title" content="Huge play - Streamer_Name"></head></html>'
    assert parse_twitch_author(html) == "Streamer_Name"

    html = '<html><head><meta property="og:title" content="Twitch"></head></html>'
    assert parse_twitch_author(html) is None
    assert parse_twitch_author("<html></html>") is None


class FailingLookup(AuthorLookup):
    async def _get_session(self) -> aiohttp.ClientSession:
        raise aiohttp.ClientConnectionError("connection refused")


def test_enrich_degrades_on_failure() -> None:
    link = sanitize_text("https://vm.tiktok.com/ZGdah868J/")
    enriched = asyncio.run(FailingLookup().enrich(link))
    assert enriched == link
    assert enriched.caption.startswith("[Post via TikTok]")


def test_short_twitch_clip_without_author_uses_clip_only_url() -> None:
    link = sanitize_text("https://clips.twitch.tv/BraveClip-xyz")
    enriched = asyncio.run(FailingLookup().enrich(link))
    assert enriched.display_username is None
    assert enriched.rewritten_url == "https://fxtwitch.seria.moe/clip/BraveClip-xyz"
    assert enriched.caption == "[Post via Twitch](https://fxtwitch.seria.moe/clip/BraveClip-xyz)"


class StaticLookup(AuthorLookup):
    def __init__(self, username):
        super().__init__()
        self.username = username
        self.calls = 0

    async def find_author(self, link: ParsedLink):
        self.calls += 1
        return self.username


def test_enrich_only_looks_up_when_needed() -> None:
    lookup = StaticLookup("someone")

    twitter = sanitize_text("https://x.com/loltyler1/status/1")
    assert asyncio.run(lookup.enrich(twitter)) == twitter

    tiktok = sanitize_text("https://vm.tiktok.com/ZGdah868J/")
    enriched = asyncio.run(lookup.enrich(tiktok))
    assert enriched.display_username == "someone"
    assert enriched.rewritten_url == tiktok.rewritten_url
    assert lookup.calls == 1
